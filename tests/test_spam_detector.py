from __future__ import annotations

from wabot.services.spam_detector import SpamDetector

OWNER = "15550000001@s.whatsapp.net"
USER = "15551110001@s.whatsapp.net"


def test_flags_message_over_threshold() -> None:
    detector = SpamDetector(window_sec=10, max_messages=5, privileged_identity=OWNER)
    results = [detector.is_spamming(USER, 100.0 + i) for i in range(6)]
    assert results == [False, False, False, False, False, True]


def test_spaced_messages_never_flag() -> None:
    detector = SpamDetector(window_sec=10, max_messages=5, privileged_identity=OWNER)
    assert not any(detector.is_spamming(USER, i * 10.5) for i in range(20))
    assert detector.window_count(USER) == 1


def test_reset_and_privileged() -> None:
    detector = SpamDetector(window_sec=10, max_messages=1, privileged_identity=OWNER)
    detector.is_spamming(USER, 1.0)
    assert detector.is_spamming(USER, 2.0)
    detector.reset(USER)
    assert not detector.is_spamming(USER, 3.0)
    assert not any(detector.is_spamming(OWNER, 1.0) for _ in range(5))
