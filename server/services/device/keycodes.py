"""
Keycode Translator

Maps browser key descriptors (KeyboardEvent.key + modifier flags) to device
key commands. Pure functions; callers submit the resulting shell command to a
CommandChannel.

Android output (adb `input`):
    keyevent        input keyevent 66
    keycombination  input keycombination 113 59 29
    text            input text 'x'

Linux output (xdotool inside the desktop container):
    key             xdotool key --clearmodifiers ctrl+shift+a
    type            xdotool type --clearmodifiers -- 'hello'
"""
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

# Browser key name -> Android KEYCODE_*
ANDROID_KEYCODES: Dict[str, int] = {
    'GoBack': 4, 'GoHome': 3, 'AppSwitch': 187, 'Power': 26,
    'Enter': 66, 'Backspace': 67, 'Delete': 112, 'Tab': 61, 'Escape': 111,
    'ArrowUp': 19, 'ArrowDown': 20, 'ArrowLeft': 21, 'ArrowRight': 22,
    'Home': 122, 'End': 123, 'PageUp': 92, 'PageDown': 93,
    'AudioVolumeUp': 24, 'AudioVolumeDown': 25,
    'F1': 131, 'F2': 132, 'F3': 133, 'F4': 134, 'F5': 135,
    'F6': 136, 'F7': 137, 'F8': 138, 'F9': 139, 'F10': 140,
    'F11': 141, 'F12': 142,
}

KEYCODE_CTRL_LEFT = 113
KEYCODE_SHIFT_LEFT = 59
KEYCODE_ALT_LEFT = 57
KEYCODE_A = 29
KEYCODE_0 = 7
KEYCODE_V = 50

MODIFIER_KEYS = frozenset([
    'Shift', 'Control', 'Alt', 'Meta',
    'CapsLock', 'NumLock', 'ScrollLock',
])

# Browser key name -> X keysym
XDOTOOL_KEYSYMS: Dict[str, str] = {
    'Enter': 'Return', 'Backspace': 'BackSpace', 'BackSpace': 'BackSpace',
    'Delete': 'Delete', 'Tab': 'Tab', 'Escape': 'Escape',
    'ArrowUp': 'Up', 'ArrowDown': 'Down', 'ArrowLeft': 'Left', 'ArrowRight': 'Right',
    'Home': 'Home', 'End': 'End', 'PageUp': 'Prior', 'PageDown': 'Next',
    ' ': 'space',
    **{f'F{n}': f'F{n}' for n in range(1, 13)},
}


class KeyActionKind(str, Enum):
    """What a key event turns into on the device."""
    NOOP = "noop"
    KEYCODE = "keycode"
    COMBINATION = "combination"
    TEXT = "text"


@dataclass(frozen=True)
class KeyAction:
    """Result of translating one browser key event."""
    kind: KeyActionKind
    codes: List[int] = field(default_factory=list)
    text: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return self.kind == KeyActionKind.NOOP

    def to_shell(self) -> Optional[str]:
        """Render as an adb `input` command, or None for no-op."""
        if self.kind == KeyActionKind.KEYCODE:
            return f"input keyevent {self.codes[0]}"
        if self.kind == KeyActionKind.COMBINATION:
            return "input keycombination " + " ".join(str(c) for c in self.codes)
        if self.kind == KeyActionKind.TEXT:
            return f"input text {shlex.quote(self.text)}"
        return None


NOOP = KeyAction(KeyActionKind.NOOP)


def char_to_keycode(key: str) -> Optional[int]:
    """Android keycode for a single letter or digit."""
    if len(key) != 1:
        return None
    c = key.lower()
    if 'a' <= c <= 'z':
        return ord(c) - ord('a') + KEYCODE_A
    if '0' <= c <= '9':
        return ord(c) - ord('0') + KEYCODE_0
    return None


def resolve_base_code(key: str) -> Optional[int]:
    """Named key first, then alphanumeric."""
    code = ANDROID_KEYCODES.get(key)
    if code is not None:
        return code
    return char_to_keycode(key)


def translate_key(
    event_type: str,
    key: str,
    ctrl: bool = False,
    shift: bool = False,
    alt: bool = False
) -> KeyAction:
    """
    Translate a browser key event into an Android key action.

    adb `input keyevent` performs a full press/release, so only keydown and
    keypress produce anything.

    Args:
        event_type: 'keydown', 'keypress' or 'keyup'
        key: KeyboardEvent.key value (already shift-adjusted by the browser)
        ctrl: Control (or Mac Cmd, mapped by the client) held
        shift: Shift held
        alt: Alt/Option held

    Returns:
        KeyAction describing the command to inject
    """
    if event_type == 'keyup' or not key:
        return NOOP
    if key in MODIFIER_KEYS:
        return NOOP

    if ctrl or shift or alt:
        base = resolve_base_code(key)
        if base is not None:
            codes = []
            if ctrl:
                codes.append(KEYCODE_CTRL_LEFT)
            if shift:
                codes.append(KEYCODE_SHIFT_LEFT)
            if alt:
                codes.append(KEYCODE_ALT_LEFT)
            codes.append(base)
            return KeyAction(KeyActionKind.COMBINATION, codes=codes)

    keycode = ANDROID_KEYCODES.get(key)
    if keycode is not None:
        return KeyAction(KeyActionKind.KEYCODE, codes=[keycode])

    if len(key) == 1:
        return KeyAction(KeyActionKind.TEXT, text=key)

    return NOOP


def paste_shortcut() -> str:
    """Ctrl+V as an adb command."""
    return f"input keycombination {KEYCODE_CTRL_LEFT} {KEYCODE_V}"


# =============================================================================
# Linux (xdotool)
# =============================================================================

def to_keysym(key: str) -> Optional[str]:
    """X keysym for a browser key name, or None if it has no mapping."""
    keysym = XDOTOOL_KEYSYMS.get(key)
    if keysym is not None:
        return keysym
    if len(key) == 1 and key.isalnum():
        return key.lower() if key.isalpha() else key
    return None


def translate_linux_key(
    key: str,
    ctrl: bool = False,
    shift: bool = False,
    alt: bool = False
) -> Optional[str]:
    """Build an `xdotool key` command, or None for unmapped/modifier keys."""
    if not key or key in MODIFIER_KEYS:
        return None
    keysym = to_keysym(key)
    if keysym is None:
        return None
    parts = []
    if ctrl:
        parts.append("ctrl")
    if shift:
        parts.append("shift")
    if alt:
        parts.append("alt")
    parts.append(keysym)
    return "xdotool key --clearmodifiers " + "+".join(parts)


def linux_type_command(text: str) -> Optional[str]:
    """Build an `xdotool type` command for literal text."""
    if not text:
        return None
    return f"xdotool type --clearmodifiers -- {shlex.quote(text)}"


def linux_paste_command(text: str) -> Optional[str]:
    """Load text into the X clipboard, then press Ctrl+V."""
    if not text:
        return None
    return (
        f"printf %s {shlex.quote(text)} | xclip -selection clipboard"
        " && xdotool key --clearmodifiers ctrl+v"
    )
