import asyncio

import pytest

import voice_pipeline
from conftest import FakeRecognizer, FakeSynthesizer
from errors import RecognitionError, RecognitionErrorKind
from voice_pipeline import OpenAITTSSynthesizer, SpeechAdapter, WhisperRecognizer


class Recorder:
    def __init__(self, adapter):
        self.events = []
        adapter.on_interim = lambda a, t: self.events.append(("interim", a, t))
        adapter.on_final = lambda a, t: self.events.append(("final", a, t))
        adapter.on_error = lambda a, k: self.events.append(("error", a, k))
        adapter.on_end = lambda a: self.events.append(("end", a))


def test_missing_backends_are_noops():
    adapter = SpeechAdapter()

    assert not adapter.is_recognition_supported
    assert not adapter.is_synthesis_supported
    assert adapter.start_listening() is False
    assert adapter.speak("hello") is False
    adapter.stop_listening()
    adapter.cancel_speech()


def test_each_start_opens_a_new_attempt():
    recognizer = FakeRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    recorder = Recorder(adapter)

    assert adapter.start_listening() is True
    assert adapter.start_listening() is False  # already listening
    assert recognizer.starts == [1]

    recognizer.interim("I need")
    recognizer.hear("I need help")
    assert not adapter.is_listening
    assert recorder.events == [
        ("interim", 1, "I need"),
        ("final", 1, "I need help"),
        ("end", 1),
    ]

    assert adapter.start_listening() is True
    assert adapter.current_attempt == 2


def test_abort_makes_the_attempt_stale():
    recognizer = FakeRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    Recorder(adapter)

    adapter.start_listening()
    adapter.abort_listening()

    assert recognizer.aborts == 1
    assert not adapter.is_listening
    assert adapter.current_attempt == 2

    # a late end from attempt 1 must not touch the listening flag of attempt 3
    adapter.start_listening()
    adapter.recognition_ended(1)
    assert adapter.is_listening


def test_start_failure_raises_recognition_error():
    adapter = SpeechAdapter(recognizer=FakeRecognizer(fail_start=True))

    with pytest.raises(RecognitionError) as info:
        adapter.start_listening()

    assert info.value.kind == RecognitionErrorKind.OTHER
    assert info.value.user_message.startswith("Could not start voice input.")
    assert not adapter.is_listening


def test_speak_replaces_current_utterance():
    synthesizer = FakeSynthesizer()
    adapter = SpeechAdapter(synthesizer=synthesizer)

    assert adapter.speak("first") is True
    assert adapter.speak("second") is True
    assert adapter.speak("muted", enabled=False) is False
    assert synthesizer.spoken == ["first", "second"]
    assert synthesizer.cancels == 2


def test_whisper_clip_reports_transcript(monkeypatch):
    monkeypatch.setattr(voice_pipeline, "transcribe_audio_file", lambda path: ("Hello there", 0.1))
    recognizer = WhisperRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    recorder = Recorder(adapter)

    adapter.start_listening()
    assert recognizer.awaiting_audio

    assert asyncio.run(recognizer.submit_clip("clip.wav")) == "Hello there"
    assert recorder.events == [("final", 1, "Hello there"), ("end", 1)]
    assert not recognizer.awaiting_audio
    assert not adapter.is_listening


def test_whisper_empty_clip_is_no_speech(monkeypatch):
    monkeypatch.setattr(voice_pipeline, "transcribe_audio_file", lambda path: ("", 0.1))
    recognizer = WhisperRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    recorder = Recorder(adapter)

    adapter.start_listening()
    asyncio.run(recognizer.submit_clip("clip.wav"))

    assert recorder.events == [("error", 1, RecognitionErrorKind.NO_SPEECH), ("end", 1)]


def test_whisper_unreadable_clip_is_audio_capture(monkeypatch):
    def broken(path):
        raise FileNotFoundError(path)

    monkeypatch.setattr(voice_pipeline, "transcribe_audio_file", broken)
    recognizer = WhisperRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    recorder = Recorder(adapter)

    adapter.start_listening()
    asyncio.run(recognizer.submit_clip("missing.wav"))

    assert recorder.events[0] == ("error", 1, RecognitionErrorKind.AUDIO_CAPTURE)


def test_whisper_clip_without_attempt_is_rejected():
    recognizer = WhisperRecognizer()
    SpeechAdapter(recognizer=recognizer)

    with pytest.raises(RecognitionError):
        asyncio.run(recognizer.submit_clip("clip.wav"))


def test_whisper_stop_ends_attempt():
    recognizer = WhisperRecognizer()
    adapter = SpeechAdapter(recognizer=recognizer)
    recorder = Recorder(adapter)

    adapter.start_listening()
    adapter.stop_listening()

    assert recorder.events == [("end", 1)]
    assert not recognizer.awaiting_audio


def test_tts_exposes_latest_file(monkeypatch, tmp_path):
    def fake_synthesize(text, filename):
        path = tmp_path / filename
        path.write_bytes(b"mp3")
        return str(path), 0.01

    monkeypatch.setattr(voice_pipeline, "synthesize_speech_to_file", fake_synthesize)
    synthesizer = OpenAITTSSynthesizer()

    async def scenario():
        synthesizer.speak("Oh, hello dear.")
        await synthesizer._task
        assert synthesizer.last_audio_path.endswith("utterance_1.mp3")

        synthesizer.speak("Thank you, dear.")
        await synthesizer._task
        assert synthesizer.last_audio_path.endswith("utterance_2.mp3")
        assert not (tmp_path / "utterance_1.mp3").exists()

        synthesizer.cancel()
        assert synthesizer.last_audio_path is None
        assert not (tmp_path / "utterance_2.mp3").exists()

    asyncio.run(scenario())
