#!/usr/bin/env python3
"""
Performance Monitor for Event Listing Automation

Records timing and process memory for wizard steps and publish runs:
- Timing measurements for each named operation
- Memory usage (RSS) before and after each operation
- A summary suitable for logging at the end of a publish run
"""

import time
import psutil
import logging
import inspect
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional
from contextlib import asynccontextmanager
from functools import wraps

logger = logging.getLogger(__name__)

SLOW_OPERATION_SECONDS = 5.0


@dataclass
class PerformanceMetrics:
    """Performance metrics for a single operation"""
    operation_name: str
    start_time: float
    end_time: float
    duration: float
    memory_before: float
    memory_after: float
    memory_delta: float
    success: bool
    error_message: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


class PerformanceMonitor:
    """
    Per-publisher operation telemetry. Each publisher owns its own instance.
    """

    def __init__(self, enable_monitoring: bool = True, label: str = ""):
        self.enable_monitoring = enable_monitoring
        self.label = label
        self.operation_metrics: List[PerformanceMetrics] = []

    @asynccontextmanager
    async def measure_async_operation(self, operation_name: str, additional_data: Dict[str, Any] = None):
        """Async context manager for measuring operation performance"""
        if not self.enable_monitoring:
            yield
            return

        start_time = time.time()
        memory_before = self._get_current_memory_usage()
        success = False
        error_message = None

        try:
            yield
            success = True
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            end_time = time.time()
            memory_after = self._get_current_memory_usage()

            metric = PerformanceMetrics(
                operation_name=operation_name,
                start_time=start_time,
                end_time=end_time,
                duration=end_time - start_time,
                memory_before=memory_before,
                memory_after=memory_after,
                memory_delta=memory_after - memory_before,
                success=success,
                error_message=error_message,
                additional_data=additional_data or {}
            )
            self.operation_metrics.append(metric)

            if metric.duration > SLOW_OPERATION_SECONDS:
                logger.info(f"Performance: {self.label} {operation_name} took {metric.duration:.2f}s, "
                            f"memory delta: {metric.memory_delta:.2f}MB")

    def record_outcome(self, operation_name: str, duration: float, success: bool,
                       error_message: Optional[str] = None):
        """Record an operation whose timing was measured by the caller"""
        if not self.enable_monitoring:
            return
        now = time.time()
        memory = self._get_current_memory_usage()
        self.operation_metrics.append(PerformanceMetrics(
            operation_name=operation_name,
            start_time=now - duration,
            end_time=now,
            duration=duration,
            memory_before=memory,
            memory_after=memory,
            memory_delta=0.0,
            success=success,
            error_message=error_message,
        ))

    def _get_current_memory_usage(self) -> float:
        """Get current memory usage in MB"""
        try:
            return psutil.Process().memory_info().rss / 1024 / 1024
        except psutil.Error:
            return 0.0

    def get_performance_summary(self) -> Dict[str, Any]:
        """Get current performance summary"""
        if not self.operation_metrics:
            return {}

        total_operations = len(self.operation_metrics)
        successful_operations = sum(1 for m in self.operation_metrics if m.success)
        total_duration = sum(m.duration for m in self.operation_metrics)
        slowest = max(self.operation_metrics, key=lambda m: m.duration)

        return {
            'total_operations': total_operations,
            'successful_operations': successful_operations,
            'success_rate': successful_operations / total_operations * 100,
            'total_duration': total_duration,
            'average_duration': total_duration / total_operations,
            'slowest_operation': slowest.operation_name,
            'memory_peak_mb': max(m.memory_after for m in self.operation_metrics),
        }

    def reset_monitoring(self):
        """Reset all monitoring data"""
        self.operation_metrics.clear()


def performance_monitor(operation_name: str = None, additional_data: Dict[str, Any] = None):
    """
    Decorator for measuring coroutine method performance
    Usage: @performance_monitor("operation_name")
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError("performance_monitor only decorates coroutine functions")

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            monitor = None
            for arg in args:
                if hasattr(arg, 'performance_monitor'):
                    monitor = arg.performance_monitor
                    break

            if monitor:
                async with monitor.measure_async_operation(operation_name or func.__name__, additional_data):
                    return await func(*args, **kwargs)
            return await func(*args, **kwargs)

        return async_wrapper
    return decorator
