"""Thin wrappers around OS clipboard, notification and viewer-app commands.

Every function here is best effort: a missing tool is logged, never raised.
"""

import logging
import shutil
import subprocess
import sys

logger = logging.getLogger(__name__)

TERMINAL_VIEWERS = {"Terminal", "iTerm2", "Warp"}

_CLIPBOARD_COMMANDS = (
    ["pbcopy"],
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
    ["xsel", "--clipboard", "--input"],
)


def _run(cmd: list[str], stdin: str | None = None) -> bool:
    try:
        subprocess.run(cmd, input=stdin, text=True, check=True, capture_output=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Command %s failed: %s", cmd[0], e)
        return False
    return True


class SystemClipboard:
    """Copies the final result and raises a desktop notification."""

    def copy(self, text: str) -> bool:
        for cmd in _CLIPBOARD_COMMANDS:
            if shutil.which(cmd[0]):
                return _run(cmd, stdin=text)
        logger.debug("No clipboard tool found; result not copied")
        return False

    def notify(self, message: str) -> bool:
        if sys.platform == "darwin" and shutil.which("osascript"):
            escaped = message.replace("\\", "\\\\").replace('"', '\\"')
            return _run(["osascript", "-e", f'display notification "{escaped}"'])
        if shutil.which("notify-send"):
            return _run(["notify-send", "gems", message])
        logger.debug("No notification tool found")
        return False


def launch_viewer(app: str, file_path: str) -> bool:
    """Open ``file_path`` in the configured viewer app (macOS terminals)."""
    if app not in TERMINAL_VIEWERS:
        logger.warning("Unknown viewer app: %s", app)
        return False
    if sys.platform != "darwin":
        logger.warning("Viewer app %s is only supported on macOS; result saved to %s", app, file_path)
        return False

    if app == "Terminal":
        script = f'tell application "Terminal"\n do script "glow -p {file_path} && exit"\nend tell'
        return _run(["osascript", "-e", script])
    if app == "iTerm2":
        script = (
            'tell application "iTerm2"\n'
            " create window with default profile\n"
            " tell current session of current window\n"
            f'  write text "glow -p {file_path} && exit"\n'
            " end tell\n"
            "end tell"
        )
        return _run(["osascript", "-e", script])
    return _run(["open", "-a", "/Applications/Warp.app", file_path])
