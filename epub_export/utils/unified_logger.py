"""
Unified logging system for the EPUB export pipeline
Provides consistent logging across the CLI and library callers
"""
import sys
import os
from datetime import datetime
from typing import Optional, Dict, Any, Callable
from enum import Enum


class LogLevel(Enum):
    """Log levels with priority values"""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class LogType(Enum):
    """Types of log messages for special handling"""
    GENERAL = "general"
    PROGRESS = "progress"
    ASSET = "asset"
    PACKAGE = "package"
    EXPORT_START = "export_start"
    EXPORT_END = "export_end"
    ERROR_DETAIL = "error_detail"


class Colors:
    """ANSI color codes for terminal output"""
    # Check if colors should be disabled
    NO_COLOR = os.environ.get('NO_COLOR') is not None or not sys.stdout.isatty()

    YELLOW = '' if NO_COLOR else '\033[93m'
    WHITE = '' if NO_COLOR else '\033[97m'
    GRAY = '' if NO_COLOR else '\033[90m'
    GREEN = '' if NO_COLOR else '\033[92m'
    RED = '' if NO_COLOR else '\033[91m'
    ENDC = '' if NO_COLOR else '\033[0m'

    @classmethod
    def disable(cls):
        """Disable all colors"""
        cls.YELLOW = cls.WHITE = cls.GRAY = cls.GREEN = cls.RED = cls.ENDC = ''


class UnifiedLogger:
    """
    Unified logger that provides consistent logging across all interfaces
    """

    def __init__(self,
                 name: str = "epub_export",
                 console_output: bool = True,
                 enable_colors: bool = True,
                 min_level: LogLevel = LogLevel.INFO,
                 web_callback: Optional[Callable] = None,
                 storage_callback: Optional[Callable] = None):
        """
        Initialize the unified logger

        Args:
            name: Logger name/identifier
            console_output: Whether to output to console
            enable_colors: Whether to use colored output
            min_level: Minimum log level to display
            web_callback: Callback receiving every structured log entry
            storage_callback: Callback for storing logs (e.g., in memory)
        """
        self.name = name
        self.console_output = console_output
        self.enable_colors = enable_colors
        self.min_level = min_level
        self.web_callback = web_callback
        self.storage_callback = storage_callback

        # Export state
        self.export_state = {
            'title': '',
            'total_chapters': 0,
            'start_time': None,
            'in_progress': False
        }

        if not enable_colors:
            Colors.disable()

    def _format_timestamp(self) -> str:
        """Format current timestamp"""
        return datetime.now().strftime("%H:%M:%S")

    def _format_console_message(self, level: LogLevel, message: str,
                                log_type: LogType = LogType.GENERAL,
                                data: Optional[Dict[str, Any]] = None) -> str:
        """Format message for console output"""
        timestamp = self._format_timestamp()

        level_colors = {
            LogLevel.DEBUG: Colors.GRAY,
            LogLevel.INFO: Colors.WHITE,
            LogLevel.WARNING: Colors.YELLOW,
            LogLevel.ERROR: Colors.RED,
            LogLevel.CRITICAL: Colors.RED
        }

        color = level_colors.get(level, Colors.WHITE)

        if log_type == LogType.PROGRESS:
            return self._format_progress(data or {})
        elif log_type == LogType.EXPORT_START:
            return self._format_export_start(message, data or {})
        elif log_type == LogType.EXPORT_END:
            return self._format_export_end(message, data or {})
        elif log_type == LogType.ERROR_DETAIL:
            return self._format_error_detail(message, data or {})
        else:
            level_str = f"[{level.name}]" if level != LogLevel.INFO else ""
            return f"{color}[{timestamp}] {level_str} {message}{Colors.ENDC}"

    def _format_progress(self, data: Dict[str, Any]) -> str:
        """Format progress summary"""
        output = []

        percent = data.get('percent', 0)
        phase = data.get('phase', '')
        message = data.get('message', '')

        output.append(f"{Colors.WHITE}[{phase.upper()}] {message}{Colors.ENDC}")

        bar_length = 30
        filled = int(bar_length * percent / 100)
        bar = '█' * filled + '░' * (bar_length - filled)
        output.append(f"{Colors.WHITE}[{bar}] {percent:.1f}%{Colors.ENDC}")

        if data.get('detail'):
            output.append(f"{Colors.GRAY}{data['detail']}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_export_start(self, message: str, data: Dict[str, Any]) -> str:
        """Format export start message"""
        output = []

        output.append(f"{Colors.YELLOW}EPUB EXPORT STARTED{Colors.ENDC}")

        self.export_state.update({
            'title': data.get('title', 'Unknown'),
            'total_chapters': data.get('total_chapters', 0),
            'start_time': datetime.now(),
            'in_progress': True
        })

        output.append(f"{Colors.WHITE}Title: {self.export_state['title']}{Colors.ENDC}")
        if self.export_state['total_chapters'] > 0:
            output.append(f"{Colors.WHITE}Chapters in snapshot: {self.export_state['total_chapters']}{Colors.ENDC}")
        if data.get('output_file'):
            output.append(f"{Colors.GRAY}Output: {data['output_file']}{Colors.ENDC}")

        return '\n'.join(output)

    def _format_export_end(self, message: str, data: Dict[str, Any]) -> str:
        """Format export end message"""
        output = []

        output.append(f"\n{Colors.WHITE}EPUB EXPORT COMPLETE{Colors.ENDC}")

        if self.export_state['start_time']:
            duration = datetime.now() - self.export_state['start_time']
            output.append(f"{Colors.GRAY}Duration: {duration}{Colors.ENDC}")

        if 'output_file' in data:
            output.append(f"{Colors.WHITE}Output saved to: {data['output_file']}{Colors.ENDC}")

        if 'stats' in data:
            stats = data['stats']
            output.append(f"{Colors.WHITE}Chapters: {stats.get('total_chapters', 0)}{Colors.ENDC}")
            output.append(f"{Colors.WHITE}Assets resolved: {stats.get('assets_resolved', 0)}{Colors.ENDC}")
            if stats.get('assets_missing', 0) > 0:
                output.append(f"{Colors.YELLOW}Assets missing: {stats['assets_missing']}{Colors.ENDC}")
            if stats.get('warnings', 0) > 0:
                output.append(f"{Colors.YELLOW}Warnings: {stats['warnings']}{Colors.ENDC}")

        self.export_state['in_progress'] = False

        return '\n'.join(output)

    def _format_error_detail(self, message: str, data: Dict[str, Any]) -> str:
        """Format detailed error message"""
        output = []

        timestamp = self._format_timestamp()
        output.append(f"{Colors.RED}[{timestamp}] ERROR: {message}{Colors.ENDC}")

        if 'details' in data:
            output.append(f"{Colors.RED}Details: {data['details']}{Colors.ENDC}")
        if 'phase' in data:
            output.append(f"{Colors.RED}Phase: {data['phase']}{Colors.ENDC}")

        return '\n'.join(output)

    def log(self, level: LogLevel, message: str,
            log_type: LogType = LogType.GENERAL,
            data: Optional[Dict[str, Any]] = None):
        """
        Main logging method

        Args:
            level: Log level
            message: Log message
            log_type: Type of log for special formatting
            data: Additional data for the log entry
        """
        if level.value < self.min_level.value:
            return

        if self.console_output:
            try:
                console_msg = self._format_console_message(level, message, log_type, data)
                if console_msg:
                    print(console_msg, flush=True)
            except UnicodeEncodeError:
                # Windows consoles (cp1252) cannot print every character
                safe_message = message.encode('ascii', 'replace').decode('ascii')
                print(f"[{self._format_timestamp()}] {safe_message}", flush=True)

        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'level': level.name,
            'type': log_type.value,
            'message': message,
            'data': data or {}
        }

        if self.web_callback:
            self.web_callback(log_entry)

        if self.storage_callback:
            self.storage_callback(log_entry)

    # Convenience methods
    def debug(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.DEBUG, message, log_type, data)

    def info(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.INFO, message, log_type, data)

    def warning(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.WARNING, message, log_type, data)

    def error(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.ERROR, message, log_type, data)

    def critical(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.CRITICAL, message, log_type, data)

    def create_progress_callback(self):
        """
        Create a progress callback that prints export progress events.

        Returns a function accepting an ExportProgress (or its dict form)
        """
        def progress_callback(progress):
            data = progress.to_dict() if hasattr(progress, 'to_dict') else dict(progress)
            self.log(LogLevel.INFO, data.get('message', ''), LogType.PROGRESS, data)

        return progress_callback


# Global logger instance
_global_logger = None


def get_logger(name: str = "epub_export", **kwargs) -> UnifiedLogger:
    """
    Get or create the global logger instance

    Args:
        name: Logger name
        **kwargs: Additional arguments for UnifiedLogger

    Returns:
        UnifiedLogger instance
    """
    global _global_logger
    if _global_logger is None:
        _global_logger = UnifiedLogger(name, **kwargs)
    else:
        if 'web_callback' in kwargs:
            _global_logger.web_callback = kwargs['web_callback']
        if 'storage_callback' in kwargs:
            _global_logger.storage_callback = kwargs['storage_callback']
        if 'min_level' in kwargs:
            _global_logger.min_level = kwargs['min_level']
    return _global_logger


def setup_cli_logger(enable_colors: bool = True) -> UnifiedLogger:
    """Setup logger for CLI usage"""
    # Import here to avoid circular dependencies
    from epub_export.config import DEBUG_MODE

    return get_logger(
        console_output=True,
        enable_colors=enable_colors,
        min_level=LogLevel.DEBUG if DEBUG_MODE else LogLevel.INFO
    )


# === Module-level convenience functions ===

def log(level: LogLevel, message: str,
        log_type: LogType = LogType.GENERAL,
        data: Optional[Dict[str, Any]] = None):
    """
    Module-level logging function using the global logger.

    Args:
        level: Log level
        message: Log message
        log_type: Type of log for special formatting
        data: Additional data for the log entry
    """
    logger = get_logger()
    logger.log(level, message, log_type, data)


def debug(message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
    """Log debug message using global logger."""
    log(LogLevel.DEBUG, message, log_type, data)


def info(message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
    """Log info message using global logger."""
    log(LogLevel.INFO, message, log_type, data)


def warning(message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
    """Log warning message using global logger."""
    log(LogLevel.WARNING, message, log_type, data)


def error(message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
    """Log error message using global logger."""
    log(LogLevel.ERROR, message, log_type, data)
