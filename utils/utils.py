"""
Logging setup, performance monitoring and result persistence shared by the
CLI, the proof bridge and the benchmarks.
"""

import json
import logging
import platform
import shutil
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional

import numpy as np
import psutil

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    cpu_percent: float
    memory_mb: float
    timestamp: float
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Configure root logging to stderr and, when given, a log file"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        handlers=handlers
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    if log_file is not None:
        logger.info(f"Logging initialized. Log file: {log_file}")
    return logging.getLogger("merkle")


def default_log_file(log_dir: Path) -> Path:
    return Path(log_dir) / f"accumulator_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


class PerformanceMonitor:
    """Collects per-operation timings with process CPU and RSS samples"""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str, **additional_data) -> 'OperationContext':
        return OperationContext(self, operation_name, additional_data)

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

    def durations(self, operation: str) -> List[float]:
        return [m.duration_seconds for m in self.metrics if m.operation == operation]

    def get_summary(self) -> Dict[str, Any]:
        """Per-operation statistics over every recorded metric"""
        summary = {
            'total_operations': len(self.metrics),
            'total_duration': 0.0,
            'operations': {}
        }

        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        for op_name, metrics in operation_groups.items():
            durations = np.array([m.duration_seconds for m in metrics])
            memory = [m.memory_mb for m in metrics if m.memory_mb > 0]
            cpu = [m.cpu_percent for m in metrics if m.cpu_percent > 0]
            total = float(durations.sum())

            summary['operations'][op_name] = {
                'count': len(metrics),
                'total_duration': total,
                'avg_duration': float(durations.mean()),
                'median_duration': float(np.median(durations)),
                'p95_duration': float(np.percentile(durations, 95)),
                'min_duration': float(durations.min()),
                'max_duration': float(durations.max()),
                'std_duration': float(durations.std()) if len(durations) > 1 else 0.0,
                'avg_cpu_percent': float(np.mean(cpu)) if cpu else 0.0,
                'peak_memory_mb': max(memory) if memory else 0.0,
                'throughput_ops_per_sec': len(metrics) / total if total > 0 else 0.0
            }

        summary['total_duration'] = sum(
            op['total_duration'] for op in summary['operations'].values())
        return summary

    def reset(self):
        self.metrics.clear()


class OperationContext:
    """Context manager timing one monitored operation"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str,
                 additional_data: Optional[Dict[str, Any]] = None):
        self.monitor = monitor
        self.operation_name = operation_name
        self.additional_data = dict(additional_data or {})
        self.start_time = 0.0
        self.start_memory = 0.0

    def __enter__(self):
        self.monitor.process.cpu_percent()
        self.start_memory = self.monitor.process.memory_info().rss / 1024 / 1024
        self.start_time = time.perf_counter()
        self.wall_start = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        end_memory = self.monitor.process.memory_info().rss / 1024 / 1024

        self.additional_data['exception'] = exc_type.__name__ if exc_type else None
        self.monitor.record_metric(PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            cpu_percent=self.monitor.process.cpu_percent(),
            memory_mb=max(self.start_memory, end_memory),
            timestamp=self.wall_start,
            additional_data=self.additional_data
        ))
        return False


def get_system_info() -> Dict[str, Any]:
    vm = psutil.virtual_memory()
    return {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'machine': platform.machine(),
        'cpu_count_logical': psutil.cpu_count(logical=True),
        'cpu_count_physical': psutil.cpu_count(logical=False),
        'total_memory_gb': round(vm.total / 1024 / 1024 / 1024, 2),
        'available_memory_gb': round(vm.available / 1024 / 1024 / 1024, 2),
        'snarkjs_available': check_command_exists('snarkjs'),
        'timestamp': datetime.now().isoformat()
    }


def _to_serializable(obj):
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    if hasattr(obj, '__dataclass_fields__'):
        return _to_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_serializable(item) for item in obj]
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, bool) or obj is None or isinstance(obj, float):
        return obj
    if isinstance(obj, int):
        # Field elements exceed the JSON-safe integer range
        return str(obj) if abs(obj) > 2 ** 53 else int(obj)
    if isinstance(obj, bytes):
        return '0x' + obj.hex()
    if isinstance(obj, (Path, datetime)):
        return str(obj)
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write results plus run metadata to JSON"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    enhanced_results = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
        },
        'data': _to_serializable(results)
    }

    with open(filepath, 'w') as f:
        json.dump(enhanced_results, f, indent=2, default=str)

    logger.info(f"Results saved to {filepath}")


def create_performance_report(monitor: PerformanceMonitor) -> str:
    summary = monitor.get_summary()

    report = []
    report.append("=" * 80)
    report.append("MERKLE ACCUMULATOR - PERFORMANCE REPORT")
    report.append("=" * 80)
    report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append(f"Total Operations: {summary['total_operations']}")
    report.append(f"Total Duration: {format_duration(summary['total_duration'])}")
    report.append("")

    if summary['operations']:
        report.append("OPERATION BREAKDOWN:")
        report.append("-" * 60)
        for op_name, op in summary['operations'].items():
            report.append(f"\n{op_name.upper()}:")
            report.append(f"  Executions: {op['count']}")
            report.append(f"  Average Time: {format_duration(op['avg_duration'])}")
            report.append(f"  Median / p95: {format_duration(op['median_duration'])} / "
                          f"{format_duration(op['p95_duration'])}")
            report.append(f"  Min/Max Time: {format_duration(op['min_duration'])} / "
                          f"{format_duration(op['max_duration'])}")
            report.append(f"  Throughput: {op['throughput_ops_per_sec']:.2f} ops/sec")
            if op['peak_memory_mb'] > 0:
                report.append(f"  Peak Memory: {op['peak_memory_mb']:.1f} MB")
    else:
        report.append("No performance data available.")

    report.append("")
    report.append("=" * 80)
    return "\n".join(report)


def check_command_exists(command: str) -> bool:
    return shutil.which(command) is not None


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format"""
    if seconds < 1:
        return f"{seconds*1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.1f}s"
