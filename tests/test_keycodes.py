"""Unit tests for key event translation."""

import shlex

from services.device.keycodes import (
    KeyActionKind,
    char_to_keycode,
    linux_paste_command,
    linux_type_command,
    paste_shortcut,
    translate_key,
    translate_linux_key,
)


class TestCharToKeycode:
    """Tests for alphanumeric keycode resolution."""

    def test_letters(self):
        assert char_to_keycode("a") == 29
        assert char_to_keycode("Z") == 54

    def test_digits(self):
        assert char_to_keycode("0") == 7
        assert char_to_keycode("9") == 16

    def test_other_characters(self):
        assert char_to_keycode("'") is None
        assert char_to_keycode("ab") is None


class TestTranslateKey:
    """Tests for Android key translation."""

    def test_keyup_is_noop(self):
        action = translate_key("keyup", "a")
        assert action.is_noop
        assert action.to_shell() is None

    def test_modifier_only_is_noop(self):
        for key in ("Shift", "Control", "Alt", "Meta", "CapsLock"):
            assert translate_key("keydown", key, shift=True).is_noop

    def test_named_key(self):
        action = translate_key("keydown", "Enter")
        assert action.kind == KeyActionKind.KEYCODE
        assert action.to_shell() == "input keyevent 66"

    def test_ctrl_shift_letter_is_ordered_combination(self):
        action = translate_key("keydown", "a", ctrl=True, shift=True)
        assert action.kind == KeyActionKind.COMBINATION
        assert action.codes == [113, 59, 29]
        assert action.to_shell() == "input keycombination 113 59 29"

    def test_modifier_with_named_key_never_plain_keycode(self):
        action = translate_key("keydown", "Tab", shift=True)
        assert action.kind == KeyActionKind.COMBINATION
        assert action.codes == [59, 61]

    def test_alt_digit(self):
        action = translate_key("keydown", "1", alt=True)
        assert action.codes == [57, 8]

    def test_literal_character(self):
        action = translate_key("keydown", "?")
        assert action.kind == KeyActionKind.TEXT
        assert action.to_shell() == f"input text {shlex.quote('?')}"

    def test_apostrophe_is_escaped_text(self):
        action = translate_key("keydown", "'")
        assert action.kind == KeyActionKind.TEXT
        command = action.to_shell()
        assert shlex.split(command) == ["input", "text", "'"]

    def test_unmapped_with_modifier_falls_back_to_text(self):
        action = translate_key("keydown", "@", shift=True)
        assert action.kind == KeyActionKind.TEXT

    def test_unknown_named_key_is_noop(self):
        assert translate_key("keydown", "Unidentified").is_noop

    def test_paste_shortcut(self):
        assert paste_shortcut() == "input keycombination 113 50"


class TestLinuxKeys:
    """Tests for xdotool command building."""

    def test_named_key(self):
        assert translate_linux_key("Backspace") == "xdotool key --clearmodifiers BackSpace"
        assert translate_linux_key("PageUp") == "xdotool key --clearmodifiers Prior"

    def test_modifiers_in_order(self):
        command = translate_linux_key("C", ctrl=True, shift=True)
        assert command == "xdotool key --clearmodifiers ctrl+shift+c"

    def test_modifier_or_unknown_is_none(self):
        assert translate_linux_key("Shift", shift=True) is None
        assert translate_linux_key("Unidentified") is None

    def test_type_quotes_text(self):
        command = linux_type_command("it's")
        assert shlex.split(command) == ["xdotool", "type", "--clearmodifiers", "--", "it's"]

    def test_empty_text(self):
        assert linux_type_command("") is None
        assert linux_paste_command("") is None

    def test_paste_loads_clipboard_then_ctrl_v(self):
        command = linux_paste_command("hello world")
        assert "xclip -selection clipboard" in command
        assert command.endswith("xdotool key --clearmodifiers ctrl+v")
