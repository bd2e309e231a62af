"""
Decorators for CLI and resource tracking.
"""

import inspect
import logging
import os
import threading
import time
from dataclasses import MISSING, fields
from functools import wraps
from typing import Annotated, get_origin

import psutil
import pyfiglet

from .base import config_logger

logger = logging.getLogger("bigPRS")


def process_cpu_time(proc: psutil.Process):
    """Calculate total CPU time for a process."""
    cpu_times = proc.cpu_times()
    return cpu_times.user + cpu_times.system


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.2f} seconds"
    elif seconds < 3600:
        return f"{seconds / 60:.2f} minutes"
    return f"{seconds / 3600:.2f} hours"


def track_resource_usage(func):
    """
    Decorator to track resource usage during function execution.
    Logs peak memory, CPU time and wall clock time at the end of the function.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        process = psutil.Process(os.getpid())
        peak_memory = 0
        cpu_percent_samples = []
        stop = threading.Event()

        def resource_monitor():
            nonlocal peak_memory
            while not stop.is_set():
                try:
                    peak_memory = max(peak_memory, process.memory_info().rss / (1024 * 1024))
                    cpu_percent = process.cpu_percent(interval=None)
                    if cpu_percent > 0:  # Skip initial zero readings
                        cpu_percent_samples.append(cpu_percent)
                except psutil.Error:
                    break
                stop.wait(0.5)

        monitor_thread = threading.Thread(target=resource_monitor, daemon=True)
        monitor_thread.start()

        start_wall_time = time.time()
        start_cpu_time = process_cpu_time(process)

        try:
            return func(*args, **kwargs)
        finally:
            stop.set()
            monitor_thread.join(timeout=1.0)

            wall_time = time.time() - start_wall_time
            cpu_time = process_cpu_time(process) - start_cpu_time
            avg_cpu_percent = (
                sum(cpu_percent_samples) / len(cpu_percent_samples) if cpu_percent_samples else 0
            )
            memory_str = f"{peak_memory:.2f} MB" if peak_memory < 1024 else f"{peak_memory / 1024:.2f} GB"

            logger.info("Resource usage summary:")
            logger.info(f"  • Wall clock time: {_format_duration(wall_time)}")
            logger.info(f"  • CPU time: {_format_duration(cpu_time)}")
            logger.info(f"  • Average CPU utilization: {avg_cpu_percent:.1f}%")
            logger.info(f"  • Peak memory usage: {memory_str}")

    return wrapper


def show_banner(command_name: str, version: str):
    """Display bigPRS banner and version information."""
    command_name = command_name.replace("_", " ")
    logo = pyfiglet.figlet_format(
        "bigPRS",
        font="doom",
        width=80,
        justify="center",
    ).rstrip()
    print(logo, flush=True)
    print(("Version: " + version).center(80), flush=True)
    print("=" * 80, flush=True)
    logger.info(f"Running {command_name}...")
    logger.info(f"Started at: {time.strftime('%Y-%m-%d %H:%M:%S')}")


def dataclass_typer(func):
    """
    Decorator to convert a function that takes a dataclass config
    into a Typer command with individual CLI options.
    """
    sig = inspect.signature(func)
    config_class = list(sig.parameters.values())[0].annotation

    @wraps(func)
    @track_resource_usage
    def wrapper(**kwargs):
        from bigPRS import __version__

        config_logger()
        show_banner(func.__name__, __version__)

        config = config_class(**kwargs)
        result = func(config)

        logger.info(f"Finished at: {time.strftime('%Y-%m-%d %H:%M:%S')}")
        return result

    # Only fields with Annotated type hints become CLI options
    params = []
    for field in fields(config_class):
        if get_origin(field.type) != Annotated:
            continue

        if field.default is not MISSING:
            default_value = field.default
        elif field.default_factory is not MISSING:
            default_value = field.default_factory()
        else:
            default_value = inspect.Parameter.empty

        params.append(inspect.Parameter(
            field.name,
            inspect.Parameter.KEYWORD_ONLY,
            annotation=field.type,  # Keep the full Annotated type
            default=default_value,
        ))

    wrapper.__signature__ = inspect.Signature(params)
    wrapper.__doc__ = func.__doc__
    return wrapper
