"""Tests for audio capture, system mute and feedback sounds."""

import subprocess
from unittest.mock import MagicMock, call, patch

import numpy as np
import pytest
import sounddevice as sd

from handy_voice import mute
from handy_voice.audio import AudioRecorder, AudioRecordingManager
from handy_voice.feedback import FEEDBACK_SAMPLE_RATE, SoundType, ToneFeedbackPlayer, render_tone
from handy_voice.mute import AudioMuteError, SystemAudioMute
from handy_voice.settings import MicrophoneMode


class TestAudioRecorder:
    """Test AudioRecorder class."""

    @patch("handy_voice.audio.sd.InputStream")
    def test_open_and_close(self, mock_stream_class):
        """Opening starts a 16 kHz mono stream; closing releases it."""
        recorder = AudioRecorder()
        recorder.open()
        recorder.open()

        assert recorder.is_open() is True
        mock_stream_class.assert_called_once()
        kwargs = mock_stream_class.call_args.kwargs
        assert kwargs["samplerate"] == 16000
        assert kwargs["channels"] == 1
        assert kwargs["blocksize"] == 800
        mock_stream_class.return_value.start.assert_called_once()

        recorder.close()
        assert recorder.is_open() is False
        mock_stream_class.return_value.close.assert_called_once()

    @patch("handy_voice.audio.sd.InputStream")
    def test_close_ignores_stream_errors(self, mock_stream_class):
        mock_stream_class.return_value.stop.side_effect = sd.PortAudioError("gone")
        recorder = AudioRecorder()
        recorder.open()
        recorder.close()
        assert recorder.is_open() is False

    def test_end_capture_without_audio(self):
        recorder = AudioRecorder()
        recorder.begin_capture()
        assert recorder.end_capture() is None

    def test_blocks_outside_capture_are_dropped(self):
        recorder = AudioRecorder()
        recorder._audio_callback(np.array([[0.9]], dtype=np.float32), 1, None, None)

        recorder.begin_capture()
        recorder._audio_callback(np.array([[0.1], [0.2]], dtype=np.float32), 2, None, None)
        recorder._audio_callback(np.array([[0.3]], dtype=np.float32), 1, None, None)
        result = recorder.end_capture()
        recorder._audio_callback(np.array([[0.5]], dtype=np.float32), 1, None, None)

        np.testing.assert_allclose(result, [0.1, 0.2, 0.3])
        assert result.dtype == np.float32
        assert recorder.end_capture() is None

    def test_callback_downmixes_to_mono(self):
        recorder = AudioRecorder(channels=2)
        recorder.begin_capture()
        recorder._audio_callback(np.array([[0.2, 0.4]], dtype=np.float32), 1, None, None)
        np.testing.assert_allclose(recorder.end_capture(), [0.3])

    def test_new_capture_starts_empty(self):
        recorder = AudioRecorder()
        recorder.begin_capture()
        recorder._audio_callback(np.ones((2, 1), dtype=np.float32), 2, None, None)

        recorder.begin_capture()

        assert recorder.end_capture() is None


def make_manager(mode=MicrophoneMode.ON_DEMAND, mute_controller=None, should_mute=lambda: False):
    recorder = MagicMock()
    recorder.is_open.return_value = False
    recorder.end_capture.return_value = np.ones(4, dtype=np.float32)
    manager = AudioRecordingManager(
        recorder=recorder, microphone_mode=mode, mute=mute_controller, should_mute=should_mute
    )
    return manager, recorder


class TestAudioRecordingManager:
    """Binding-aware capture."""

    def test_on_demand_start_and_stop(self):
        manager, recorder = make_manager()

        assert manager.try_start_recording("transcribe") is True
        assert manager.is_recording() is True
        samples = manager.stop_recording("transcribe")

        recorder.open.assert_called_once_with(None)
        recorder.begin_capture.assert_called_once()
        recorder.close.assert_called_once()
        assert len(samples) == 4
        assert manager.is_recording() is False

    def test_second_start_is_refused(self):
        manager, recorder = make_manager()

        assert manager.try_start_recording("transcribe") is True
        assert manager.try_start_recording("transcribe") is False
        assert manager.try_start_recording("other") is False
        recorder.begin_capture.assert_called_once()

    def test_stop_for_other_binding_returns_none(self):
        manager, recorder = make_manager()
        manager.try_start_recording("transcribe")

        assert manager.stop_recording("other") is None
        assert manager.is_recording() is True
        recorder.end_capture.assert_not_called()

    def test_start_failure_returns_false(self):
        manager, recorder = make_manager()
        recorder.open.side_effect = sd.PortAudioError("no device")

        assert manager.try_start_recording("transcribe") is False
        assert manager.is_recording() is False
        recorder.begin_capture.assert_not_called()

    def test_always_on_keeps_stream_open(self):
        manager, recorder = make_manager(MicrophoneMode.ALWAYS_ON)
        manager.open_microphone()
        recorder.open.assert_called_once_with(None)
        recorder.is_open.return_value = True
        manager.open_microphone()
        assert recorder.open.call_count == 1

        assert manager.try_start_recording("transcribe") is True
        manager.stop_recording("transcribe")

        recorder.end_capture.assert_called_once()
        recorder.close.assert_not_called()

    def test_on_demand_open_microphone_is_noop(self):
        manager, recorder = make_manager()
        manager.open_microphone()
        recorder.open.assert_not_called()

    def test_apply_mute_only_while_recording_and_enabled(self):
        controller = MagicMock()
        enabled = {"value": False}
        manager, _ = make_manager(mute_controller=controller, should_mute=lambda: enabled["value"])

        manager.apply_mute()
        manager.try_start_recording("transcribe")
        manager.apply_mute()
        controller.mute.assert_not_called()

        enabled["value"] = True
        manager.apply_mute()
        controller.mute.assert_called_once()

        manager.remove_mute()
        controller.restore.assert_called_once()

    def test_apply_mute_after_remove_mute_is_noop(self):
        """A start stage that finishes after the stop leaves output unmuted."""
        controller = MagicMock()
        manager, _ = make_manager(mute_controller=controller, should_mute=lambda: True)
        manager.try_start_recording("transcribe")

        manager.remove_mute()
        manager.apply_mute()

        controller.mute.assert_not_called()
        controller.restore.assert_called_once()

    def test_next_capture_rearms_mute(self):
        controller = MagicMock()
        manager, _ = make_manager(mute_controller=controller, should_mute=lambda: True)
        manager.try_start_recording("transcribe")
        manager.remove_mute()
        manager.stop_recording("transcribe")

        manager.try_start_recording("transcribe")
        manager.apply_mute()

        controller.mute.assert_called_once()

    def test_shutdown_restores_mute_and_closes(self):
        controller = MagicMock()
        manager, recorder = make_manager(mute_controller=controller)
        manager.shutdown()
        controller.restore.assert_called_once()
        recorder.shutdown.assert_called_once()


class TestSystemAudioMute:
    """Mute and restore the previous output state."""

    def test_mute_then_restore(self):
        strategy = MagicMock()
        strategy.read_muted.return_value = False
        controller = SystemAudioMute(strategy)

        controller.mute()
        controller.restore()

        assert strategy.set_muted.call_args_list == [call(True), call(False)]

    def test_already_muted_is_left_alone(self):
        strategy = MagicMock()
        strategy.read_muted.return_value = True
        controller = SystemAudioMute(strategy)

        controller.mute()
        controller.restore()

        strategy.set_muted.assert_not_called()

    def test_restore_without_mute_is_noop(self):
        strategy = MagicMock()
        SystemAudioMute(strategy).restore()
        strategy.set_muted.assert_not_called()

    def test_failure_disables_muting(self):
        strategy = MagicMock()
        strategy.read_muted.side_effect = AudioMuteError("mixer gone")
        controller = SystemAudioMute(strategy)

        controller.mute()

        assert controller.available is False

    def test_no_mixer_available(self):
        with patch("handy_voice.mute.platform.system", return_value="Linux"):
            with patch("handy_voice.mute.shutil.which", return_value=None):
                assert SystemAudioMute().available is False

    def test_pactl_detected(self):
        with patch("handy_voice.mute.platform.system", return_value="Linux"):
            with patch("handy_voice.mute.shutil.which", side_effect=lambda name: name == "pactl" or None):
                assert isinstance(mute._detect_strategy(), mute._PactlStrategy)

    @patch("handy_voice.mute.subprocess.check_output")
    def test_wpctl_reads_muted(self, mock_output):
        mock_output.return_value = "Volume: 0.40 [MUTED]\n"
        assert mute._WpctlStrategy().read_muted() is True

    @patch("handy_voice.mute.subprocess.run")
    def test_command_failure_raises(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(1, "pactl")
        with pytest.raises(AudioMuteError, match="pactl set-sink-mute failed"):
            mute._PactlStrategy().set_muted(True)


class TestFeedback:
    """Start/stop chimes."""

    def test_render_tone(self):
        tone = render_tone(SoundType.START)
        assert tone.dtype == np.float32
        assert len(tone) == int(FEEDBACK_SAMPLE_RATE * 0.06) + int(FEEDBACK_SAMPLE_RATE * 0.08)
        assert np.max(np.abs(tone)) <= 0.2 + 1e-6
        assert tone[0] == 0.0

    @patch("handy_voice.feedback.sd")
    def test_play_blocking_waits(self, mock_sd):
        player = ToneFeedbackPlayer()
        player.play_blocking(SoundType.STOP)
        mock_sd.play.assert_called_once()
        mock_sd.wait.assert_called_once()

    @patch("handy_voice.feedback.sd")
    def test_disabled_is_silent(self, mock_sd):
        player = ToneFeedbackPlayer()
        player.play_blocking(SoundType.START, enabled=False)
        player.play(SoundType.STOP, enabled=False)
        mock_sd.play.assert_not_called()

    @patch("handy_voice.feedback.sd.wait")
    @patch("handy_voice.feedback.sd.play")
    def test_device_error_is_logged(self, mock_play, mock_wait, caplog):
        mock_play.side_effect = sd.PortAudioError("no output")
        ToneFeedbackPlayer().play_blocking(SoundType.START)
        assert "Could not play start feedback sound" in caplog.text
