"""Performance monitor and result persistence"""

import json

import pytest

from merkle import hash2
from utils import PerformanceMonitor, create_performance_report, format_duration, save_results


def test_monitor_summary():
    monitor = PerformanceMonitor()
    for i in range(3):
        with monitor.start_operation('hash2'):
            hash2(i, i)

    summary = monitor.get_summary()
    assert summary['total_operations'] == 3
    op = summary['operations']['hash2']
    assert op['count'] == 3
    assert op['min_duration'] <= op['median_duration'] <= op['max_duration']
    assert 'HASH2' in create_performance_report(monitor)


def test_monitor_records_failures():
    monitor = PerformanceMonitor()
    with pytest.raises(KeyError):
        with monitor.start_operation('lookup'):
            raise KeyError('x')
    assert monitor.metrics[0].additional_data['exception'] == 'KeyError'


def test_empty_report():
    assert "No performance data available." in create_performance_report(PerformanceMonitor())


@pytest.mark.parametrize("seconds,expected", [
    (0.0123, "12.3ms"),
    (5, "5.00s"),
    (125, "2m 5.0s"),
    (3725, "1h 2m 5.0s"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_save_results_keeps_large_field_values_exact(tmp_path):
    path = tmp_path / "out" / "results.json"
    root = hash2(1, 2)
    save_results({'root': root, 'leaves': 3}, path)

    data = json.loads(path.read_text())['data']
    assert data['root'] == str(root)
    assert data['leaves'] == 3
