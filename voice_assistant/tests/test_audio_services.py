"""Tests for the sounddevice-backed dictation and loopback capture services."""

import asyncio
import unittest
from unittest.mock import Mock, patch

import numpy as np
import pytest
import sounddevice as sd

from voice_assistant.errors import CaptureError, PermissionDeniedError, TransportError
from voice_assistant.providers.capture.loopback import LoopbackCaptureService
from voice_assistant.providers.speech.vad_dictation import VadDictationService, resolve_device
from voice_assistant.providers.transcription.base import encode_wav
from voice_assistant.utils.voice_activity import VoiceActivityDetector, VoiceEvent
from mocks.providers import MockTranscriber


class TestVoiceActivityDetector(unittest.TestCase):
    """Test utterance segmentation."""

    def setUp(self):
        self.detector = VoiceActivityDetector(
            sample_rate=16000, frame_duration_ms=30, silence_duration_ms=90
        )
        self.detector.vad = Mock()

    def test_initialization(self):
        self.assertEqual(self.detector.frame_size, 480)
        self.assertEqual(self.detector.silence_frames_needed, 3)
        self.assertFalse(self.detector.is_voice_active)

    def test_invalid_frame_duration(self):
        with self.assertRaises(ValueError):
            VoiceActivityDetector(frame_duration_ms=25)

    def test_silence_produces_no_events(self):
        self.detector.vad.is_speech.return_value = False
        events = [self.detector.process_frame(np.zeros(480)) for _ in range(40)]
        self.assertEqual([e for e in events if e is not None], [])

    def test_speech_start_and_end(self):
        loud = np.full(480, 0.5, dtype=np.float32)

        self.detector.vad.is_speech.return_value = True
        events = [self.detector.process_frame(loud) for _ in range(10)]
        self.assertEqual(events[-1], VoiceEvent.SPEECH_START)
        self.assertTrue(self.detector.is_voice_active)

        self.detector.vad.is_speech.return_value = False
        events = [self.detector.process_frame(np.zeros(480)) for _ in range(3)]
        self.assertEqual(events, [None, None, VoiceEvent.SPEECH_END])
        self.assertFalse(self.detector.is_voice_active)

    def test_short_frame_is_padded(self):
        self.detector.vad.is_speech.return_value = False
        self.detector.process_frame(np.zeros(100))
        audio_bytes = self.detector.vad.is_speech.call_args.args[0]
        self.assertEqual(len(audio_bytes), 480 * 2)


class TestResolveDevice(unittest.TestCase):
    def test_resolve(self):
        self.assertIsNone(resolve_device("default"))
        self.assertEqual(resolve_device("3"), 3)
        self.assertEqual(resolve_device("BlackHole 2ch"), "BlackHole 2ch")


class TestEncodeWav(unittest.TestCase):
    def test_wav_header(self):
        audio = encode_wav(np.zeros(1600, dtype=np.float32), 16000)
        self.assertEqual(audio[:4], b"RIFF")
        self.assertEqual(audio[8:12], b"WAVE")


class TestVadDictationService:
    """Test the dictation service lifecycle and result delivery."""

    def setup_method(self):
        self.transcriber = MockTranscriber(["turn on the lights"])
        self.service = VadDictationService(self.transcriber)
        self.listener = Mock()
        self.service.set_listener(self.listener)

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.speech.vad_dictation.sd.InputStream")
    async def test_start_and_stop(self, mock_input_stream):
        self.service.set_device("2")
        self.service.start()
        await asyncio.sleep(0)

        mock_input_stream.assert_called_once()
        assert mock_input_stream.call_args.kwargs["device"] == 2
        assert mock_input_stream.call_args.kwargs["blocksize"] == 480
        self.listener.handle_start.assert_called_once()
        assert self.service.is_running

        self.service.stop()
        self.service.stop()
        await asyncio.sleep(0)

        self.listener.handle_end.assert_called_once()
        mock_input_stream.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.speech.vad_dictation.sd.InputStream")
    async def test_device_failure_reports_audio_capture(self, mock_input_stream):
        mock_input_stream.side_effect = sd.PortAudioError("Invalid device")

        self.service.start()
        await asyncio.sleep(0)

        self.listener.handle_error.assert_called_once_with("audio-capture")
        self.listener.handle_start.assert_not_called()
        assert self.service.is_running is False

    @pytest.mark.asyncio
    async def test_each_utterance_is_its_own_final_result(self):
        self.service.is_running = True

        await self.service._transcribe(np.zeros(480, dtype=np.float32))
        await self.service._transcribe(np.zeros(480, dtype=np.float32))

        assert self.listener.handle_result.call_count == 2
        for call in self.listener.handle_result.call_args_list:
            event = call.args[0]
            assert event.result_index == 0
            assert [r.transcript for r in event.results] == ["turn on the lights"]
            assert event.results[0].is_final

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.speech.vad_dictation.sd.InputStream")
    async def test_stop_reports_pending_speech_before_ending(self, mock_input_stream):
        self.transcriber.transcripts = ["first", "second"]
        self.service.start()
        await asyncio.sleep(0)

        self.service._utterance = [np.zeros(480, dtype=np.float32)]
        self.service._flush_utterance()
        self.service._utterance = [np.zeros(480, dtype=np.float32)]
        self.service.stop()

        assert self.service.is_draining
        await self.service._drain

        transcripts = [
            call.args[0].results[0].transcript
            for call in self.listener.handle_result.call_args_list
        ]
        assert transcripts == ["first", "second"]
        names = [name for name, _, _ in self.listener.mock_calls]
        assert names == ["handle_start", "handle_result", "handle_result", "handle_end"]
        assert self.service.is_draining is False

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.speech.vad_dictation.sd.InputStream")
    async def test_stop_without_speech_ends_immediately(self, mock_input_stream):
        self.service.start()
        await asyncio.sleep(0)

        self.service.stop()
        await asyncio.sleep(0)

        assert self.service.is_draining is False
        self.listener.handle_result.assert_not_called()
        self.listener.handle_end.assert_called_once()

    @pytest.mark.asyncio
    async def test_transcription_failure_reports_network(self):
        self.transcriber.error = TransportError("Failed to transcribe audio.")
        self.service.is_running = True
        self.service.loop = asyncio.get_running_loop()
        self.service._ended = False

        await self.service._transcribe(np.zeros(480, dtype=np.float32))
        await asyncio.sleep(0)

        self.listener.handle_error.assert_called_once_with("network")
        self.listener.handle_end.assert_called_once()
        assert self.service.is_running is False


class TestLoopbackCaptureService:
    """Test tab audio capture from a loopback device."""

    @pytest.mark.asyncio
    async def test_no_device_counts_as_dismissed(self):
        with pytest.raises(PermissionDeniedError):
            await LoopbackCaptureService().request_capture()

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.capture.loopback.sd.query_devices")
    async def test_unknown_device(self, mock_query):
        mock_query.side_effect = ValueError("No input device matching 'Nope'")

        with pytest.raises(CaptureError, match="not available"):
            await LoopbackCaptureService(device_id="Nope").request_capture()

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.capture.loopback.sd.InputStream")
    @patch("voice_assistant.providers.capture.loopback.sd.query_devices")
    async def test_capture_delivers_frames(self, mock_query, mock_input_stream):
        mock_query.return_value = {"name": "BlackHole 2ch", "max_input_channels": 2}
        service = LoopbackCaptureService(device_id="4")

        stream = await service.request_capture()
        frames = []
        stream.attach_sink(frames.append)

        track = stream.get_audio_tracks()[0]
        track._audio_callback(np.ones((160, 1), dtype=np.float32), 160, None, None)
        await asyncio.sleep(0)

        assert track.label == "BlackHole 2ch"
        assert len(frames) == 1
        assert frames[0].sample_rate == 16000
        assert len(frames[0].samples) == 160

        track.stop()
        mock_input_stream.return_value.abort.assert_called_once()
        assert service.get_status()["captures"] == 1

    @pytest.mark.asyncio
    @patch("voice_assistant.providers.capture.loopback.sd.query_devices")
    async def test_output_only_device_has_no_audio_track(self, mock_query):
        mock_query.return_value = {"name": "Speakers", "max_input_channels": 0}

        stream = await LoopbackCaptureService(device_id="Speakers").request_capture()

        assert stream.get_audio_tracks() == []
