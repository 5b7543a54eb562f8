import os
import subprocess
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from ruamel.yaml import YAML
from colorama import Fore, Style, init as colorama_init

# Console color setup
colorama_init(autoreset=True)

# Global logging context
_CURRENT_CHART = None
_CURRENT_INDENT = 0

class _ColorFormatter(logging.Formatter):
    def format(self, record):
        # Level-based color
        if record.levelno >= logging.ERROR:
            level_color = Fore.RED + "ERROR" + Style.RESET_ALL
        elif record.levelno >= logging.WARNING:
            level_color = Fore.YELLOW + "WARN" + Style.RESET_ALL
        elif record.levelno >= logging.INFO:
            level_color = Fore.GREEN + "INFO" + Style.RESET_ALL
        else:
            level_color = Fore.BLUE + "DEBUG" + Style.RESET_ALL

        # Chart prefix and indentation
        chart = _CURRENT_CHART or ""
        indent_spaces = "  " * max(0, _CURRENT_INDENT)
        chart_prefix = f"[{chart}] " if chart else ""
        original_msg = super().format(record)
        return f"[{level_color}] {indent_spaces}{chart_prefix}{original_msg}"

def configure_colored_logging(debug: bool = False):
    """
    Configure root logger to use colored, contextual formatting.
    Safe to call multiple times.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    fmt = _ColorFormatter("%(message)s")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(fmt)
        root.addHandler(handler)
    else:
        for h in root.handlers:
            h.setFormatter(fmt)

def set_log_context(chart: Optional[str], indent: int = 0):
    """
    Set current log context (chart path + indentation level).
    Only the sequential extraction phase sets it; mirror workers log without it.
    """
    global _CURRENT_CHART, _CURRENT_INDENT
    _CURRENT_CHART = chart
    _CURRENT_INDENT = indent

def clear_log_context():
    """
    Clear current log context.
    """
    set_log_context(None, 0)

logger = logging.getLogger(__name__)


class ChartNotFound(Exception):
    """
    Raised when a requested chart path does not resolve to a directory.
    """


@dataclass(frozen=True)
class ChartSource:
    path: str

    def __str__(self):
        return self.path


def resolve_chart_path(raw: str) -> ChartSource:
    """
    Resolve a CLI chart argument to a ChartSource.

    Trailing slashes are stripped; a path that is not found as given is
    retried relative to the current directory with a './' prefix.
    """
    chart = (raw or "").strip()
    if chart not in ("", "/"):
        chart = chart.rstrip("/")
    if chart and os.path.isdir(chart):
        return ChartSource(chart)
    if chart and not os.path.isabs(chart) and os.path.isdir(f"./{chart}"):
        logger.debug(f"Using relative path: ./{chart}")
        return ChartSource(f"./{chart}")
    raise ChartNotFound(f"{chart or raw!r} (pwd: {os.getcwd()})")


class HelmChart:
    def __init__(self, chart: ChartSource, release_name: str = "test-release", timeout: int = 300):
        """
        Renders a local chart directory with the helm CLI.

        Args:
            chart (ChartSource): The chart directory.
            release_name (str): Release name passed to 'helm template'.
            timeout (int): Per-command timeout in seconds.
        """
        self.chart = chart
        self.release_name = release_name
        self.timeout = timeout
        self.failed_commands = []

    @property
    def path(self):
        return self.chart.path

    def run_helm(self, args, error_message):
        """
        Run a helm command and return stdout on success, None on failure.
        args should NOT include the 'helm' prefix.
        """
        cmd = ["helm"] + args
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"Helm command timed out: {cmd}. {error_message}")
            self.failed_commands.append((cmd, error_message, f"timeout: {e}"))
            return None
        except FileNotFoundError as e:
            logger.error(f"Missing dependency: 'helm' not found on PATH while running: {cmd}. {error_message}")
            self.failed_commands.append((cmd, error_message, str(e)))
            return None
        if result.returncode != 0:
            logger.debug(f"{error_message}: {result.stderr}")
            self.failed_commands.append((cmd, error_message, result.stderr))
            return None
        return result.stdout

    def _read_chart_yaml(self):
        yaml = YAML(typ="safe")
        chart_yaml_path = os.path.join(self.path, "Chart.yaml")
        try:
            with open(chart_yaml_path, "r", encoding="utf-8") as f:
                return yaml.load(f) or {}
        except FileNotFoundError:
            return None
        except Exception as e:
            logger.warning(f"Unable to parse Chart.yaml at {chart_yaml_path}: {e}")
            return None

    def has_dependencies(self) -> bool:
        """
        True when Chart.yaml declares dependencies. Falls back to a plain text
        check when Chart.yaml is not valid YAML (templated or malformed).
        """
        meta = self._read_chart_yaml()
        if isinstance(meta, dict):
            return bool(meta.get("dependencies"))
        chart_yaml_path = os.path.join(self.path, "Chart.yaml")
        try:
            with open(chart_yaml_path, "r", encoding="utf-8", errors="replace") as f:
                return "dependencies:" in f.read()
        except OSError:
            return False

    def build_dependencies(self) -> bool:
        """
        Vendor declared subcharts into charts/. Tries 'helm dependency build'
        and falls back to 'helm dependency update'. Failure is not fatal.
        """
        if self.has_dependencies():
            logger.debug("Chart has dependencies, building them...")
            if self.run_helm(["dependency", "build", self.path], "Failed to build chart dependencies") is not None:
                logger.debug(f"Successfully built dependencies for {self.path}")
                return True
            logger.warning(f"Failed to build dependencies for {self.path}, trying update instead...")
            if self.run_helm(["dependency", "update", self.path], "Failed to update chart dependencies") is not None:
                return True
            logger.warning(f"Failed to update dependencies for {self.path}")
            return False
        if os.path.exists(os.path.join(self.path, "Chart.lock")):
            return self.run_helm(["dependency", "update", self.path], "Failed to update chart dependencies") is not None
        return True

    def render(self) -> Tuple[str, bool]:
        """
        Render the chart to a flat manifest stream.

        Returns:
            tuple: (manifest_text, ok). On failure manifest_text is empty and
            ok is False; callers treat that as a chart with no images.
        """
        self.build_dependencies()
        output = self.run_helm(["template", self.release_name, self.path], "Failed to template chart")
        if output is None:
            _, _, reason = self.failed_commands[-1]
            logger.warning(f"Failed to template chart: {self.path} ({str(reason).strip()})")
            return "", False
        logger.debug(f"Successfully templated chart: {self.path}")
        return output, True

    def read_values(self) -> str:
        """
        Return the raw text of the chart's values.yaml, or "" when absent.
        """
        values_path = os.path.join(self.path, "values.yaml")
        if not os.path.isfile(values_path):
            logger.debug(f"No values.yaml found in {self.path} - this is normal for charts with dependencies")
            return ""
        with open(values_path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
