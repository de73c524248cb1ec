"""Utilities for the registration accumulator."""

from .utils import (
    setup_logging,
    default_log_file,
    save_results,
    PerformanceMonitor,
    PerformanceMetrics,
    create_performance_report,
    get_system_info,
    check_command_exists,
    format_duration
)

__all__ = [
    'setup_logging',
    'default_log_file',
    'save_results',
    'PerformanceMonitor',
    'PerformanceMetrics',
    'create_performance_report',
    'get_system_info',
    'check_command_exists',
    'format_duration'
]
