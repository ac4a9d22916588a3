"""
Microphone recording for the Mirror Play client.

Handles:
- Exclusive ownership of the capture device (DeviceLock)
- Probing a supported capture format before opening the device
- Buffering PCM chunks on a reader thread, with pause/resume
- Finalizing the buffered chunks into a single WAV payload
"""

import io
import logging
import threading
import wave
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np

from mirrorplay.common.models import RecordedAudio, RecorderState

logger = logging.getLogger(__name__)

# Audio constants
SAMPLE_RATE = 16000
CHANNELS = 1
CHUNK_SIZE = 1024
SAMPLE_WIDTH = 2  # 16-bit audio

# Formats tried in order before falling back to the device default
PREFERRED_FORMATS: tuple[tuple[int, int], ...] = (
    (16000, 1),
    (48000, 1),
    (44100, 1),
    (16000, 2),
    (48000, 2),
    (44100, 2),
)
COMMON_RATES = (48000, 44100, 32000, 24000, 22050, 16000, 8000)

# Try to import PyAudio
HAS_PYAUDIO = False
if TYPE_CHECKING:
    import pyaudio
else:
    try:
        import pyaudio

        HAS_PYAUDIO = True
    except ImportError:
        pyaudio = None


class RecorderError(Exception):
    """Base class for capture device failures."""


class MicrophonePermissionError(RecorderError):
    """Microphone access was denied or revoked."""


class DeviceUnavailableError(RecorderError):
    """No usable input device, or the device went away."""


class UnsupportedFormatError(RecorderError):
    """The device rejected every probed format and the fallback."""


_PERMISSION_MARKERS = ("permission", "denied", "not allowed", "-9999")


def _classify_open_error(error: Exception) -> RecorderError:
    message = str(error)
    if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
        return MicrophonePermissionError(f"Microphone access denied: {message}")
    return DeviceUnavailableError(f"Microphone unavailable: {message}")


class DeviceLock:
    """
    Exclusive ownership of the microphone.

    acquire() releases the previous holder (through the release callback it
    registered) before handing the device to the new one, so at most one
    capture holds the device at any time.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holder: object | None = None
        self._release: Callable[[], None] | None = None

    def acquire(self, holder: object, release: Callable[[], None]) -> None:
        with self._lock:
            previous, previous_release = self._holder, self._release
            self._holder = None
            self._release = None

        if previous is not None and previous is not holder and previous_release:
            logger.info("Releasing microphone held by a previous capture")
            try:
                previous_release()
            except Exception as e:
                logger.warning(f"Previous capture did not release cleanly: {e}")

        with self._lock:
            self._holder = holder
            self._release = release

    def release(self, holder: object) -> None:
        with self._lock:
            if self._holder is holder:
                self._holder = None
                self._release = None

    @property
    def holder(self) -> object | None:
        return self._holder

    @property
    def is_held(self) -> bool:
        return self._holder is not None


class AudioRecorder:
    """
    Microphone recorder with an explicit lifecycle.

    IDLE -> REQUESTING_PERMISSION -> RECORDING -> (PAUSED <-> RECORDING)
    -> STOPPED -> IDLE
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        chunk_size: int = CHUNK_SIZE,
        device_index: int | None = None,
        device_lock: DeviceLock | None = None,
        on_audio_chunk: Callable[[bytes], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_release: Callable[[], None] | None = None,
    ):
        """
        Initialize the audio recorder.

        Args:
            sample_rate: Target sample rate of the finalized payload
            channels: Target channel count of the finalized payload
            chunk_size: Frames per read
            device_index: Input device index (None for default)
            device_lock: Shared microphone ownership; a private one if omitted
            on_audio_chunk: Called with each raw chunk in the capture format
            on_error: Called from the reader thread if capture fails mid-session
            on_release: Called when another capture takes the device; cancels
                this recorder if omitted
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.device_index = device_index
        self.device_lock = device_lock or DeviceLock()
        self.on_audio_chunk = on_audio_chunk
        self.on_error = on_error
        self.on_release = on_release

        self._audio: Any = None
        self._stream: Any = None
        self._state = RecorderState.IDLE
        self._state_lock = threading.RLock()
        self._device_guard = threading.Lock()
        self._resume_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._frames: list[bytes] = []
        self._frames_lock = threading.Lock()
        self._actual_sample_rate: int = sample_rate
        self._actual_channels: int = channels
        self._error: Exception | None = None

    # ------------------------------------------------------------------
    # Format probing
    # ------------------------------------------------------------------

    def _is_supported(self, device_index: int | None, rate: int, channels: int) -> bool:
        try:
            return bool(
                self._audio.is_format_supported(
                    rate,
                    input_device=device_index,
                    input_channels=channels,
                    input_format=pyaudio.paInt16,
                )
            )
        except ValueError:
            return False

    def _get_device_index(self) -> int | None:
        """Resolve the input device, raising if none exists."""
        if self.device_index is not None:
            return self.device_index

        try:
            default_info = self._audio.get_default_input_device_info()
        except (OSError, IOError) as e:
            raise DeviceUnavailableError(f"No default input device: {e}") from e
        return int(default_info["index"])

    def _probe_format(self, device_index: int | None) -> tuple[int, int]:
        """
        Find a capture format the device accepts.

        Tries the requested format, then PREFERRED_FORMATS, then the device's
        default rate and the common rates. Falls back to the requested format
        with a warning if nothing is reported as supported.
        """
        candidates: list[tuple[int, int]] = [(self.sample_rate, self.channels)]
        candidates.extend(f for f in PREFERRED_FORMATS if f not in candidates)

        for rate, channels in candidates:
            if self._is_supported(device_index, rate, channels):
                return rate, channels

        try:
            if device_index is not None:
                device_info = self._audio.get_device_info_by_index(device_index)
            else:
                device_info = self._audio.get_default_input_device_info()
            default_rate = int(device_info.get("defaultSampleRate", 44100))
            logger.info(f"Device default sample rate: {default_rate} Hz")
        except (OSError, IOError, ValueError) as e:
            logger.warning(f"Could not get device info: {e}")
            default_rate = None

        rates = [default_rate] if default_rate else []
        rates.extend(r for r in COMMON_RATES if r not in rates)
        for rate in rates:
            for channels in (1, 2):
                if self._is_supported(device_index, rate, channels):
                    logger.info(f"Using fallback format: {rate} Hz, {channels} ch")
                    return rate, channels

        logger.warning(
            f"No probed format reported as supported, falling back to "
            f"{self.sample_rate} Hz, {self.channels} ch"
        )
        return self.sample_rate, self.channels

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Open the microphone and start buffering.

        Raises:
            RecorderError: Permission denied, no device, or no usable format.
                The recorder is back in IDLE and holds no device.
        """
        with self._state_lock:
            if self._state is not RecorderState.IDLE:
                raise RecorderError(f"Cannot start recording from {self._state.value}")
            self._state = RecorderState.REQUESTING_PERMISSION

        self.device_lock.acquire(self, self.on_release or self.cancel)

        if not HAS_PYAUDIO:
            self._abort_start()
            raise DeviceUnavailableError("PyAudio is required for microphone recording")

        try:
            self._audio = pyaudio.PyAudio()
            device_index = self._get_device_index()
            actual_rate, actual_channels = self._probe_format(device_index)
            probed = self._is_supported(device_index, actual_rate, actual_channels)

            try:
                self._stream = self._audio.open(
                    format=pyaudio.paInt16,
                    channels=actual_channels,
                    rate=actual_rate,
                    input=True,
                    frames_per_buffer=self.chunk_size,
                    input_device_index=device_index,
                )
            except (OSError, IOError, ValueError) as e:
                if not probed:
                    raise UnsupportedFormatError(
                        f"Device rejected fallback format {actual_rate} Hz: {e}"
                    ) from e
                raise _classify_open_error(e) from e
        except RecorderError:
            self._abort_start()
            raise
        except (OSError, IOError) as e:
            self._abort_start()
            raise _classify_open_error(e) from e

        self._actual_sample_rate = actual_rate
        self._actual_channels = actual_channels
        if actual_rate != self.sample_rate:
            logger.info(
                f"Will resample from {actual_rate} Hz to {self.sample_rate} Hz after recording"
            )
        if actual_channels != self.channels:
            logger.info(
                f"Will convert from {actual_channels} channels to {self.channels} after recording"
            )

        with self._frames_lock:
            self._frames = []
        self._error = None
        self._resume_event.set()

        with self._state_lock:
            self._state = RecorderState.RECORDING

        self._thread = threading.Thread(target=self._record_loop, name="mic-reader")
        self._thread.daemon = True
        self._thread.start()

        logger.info(f"Recording started at {actual_rate} Hz, {actual_channels} ch")

    def _abort_start(self) -> None:
        self._cleanup()
        with self._state_lock:
            self._state = RecorderState.IDLE

    def _record_loop(self) -> None:
        """Reader loop that runs on its own thread until stop or cancel."""
        stream_paused = False
        while True:
            with self._state_lock:
                state = self._state
            if state not in (RecorderState.RECORDING, RecorderState.PAUSED):
                break

            stream = self._stream
            if stream is None:
                break

            try:
                if state is RecorderState.PAUSED:
                    if not stream_paused:
                        stream.stop_stream()
                        stream_paused = True
                    self._resume_event.wait(0.1)
                    continue

                if stream_paused:
                    stream.start_stream()
                    stream_paused = False

                data = stream.read(self.chunk_size, exception_on_overflow=False)
            except Exception as e:
                with self._state_lock:
                    still_active = self._state in (
                        RecorderState.RECORDING,
                        RecorderState.PAUSED,
                    )
                if still_active:
                    self._handle_capture_failure(e)
                break

            with self._state_lock:
                if self._state is not RecorderState.RECORDING:
                    # Paused or stopped while this chunk was being read
                    continue
            with self._frames_lock:
                self._frames.append(data)

            if self.on_audio_chunk:
                try:
                    self.on_audio_chunk(data)
                except Exception as e:
                    logger.debug(f"Audio chunk listener failed: {e}")

    def _handle_capture_failure(self, error: Exception) -> None:
        """Device failed mid-session: release it and report."""
        logger.error(f"Recording error: {error}")
        self._error = _classify_open_error(error)
        self._cleanup()
        with self._state_lock:
            self._state = RecorderState.STOPPED
        if self.on_error:
            self.on_error(self._error)

    def pause(self) -> bool:
        """Suspend capture, keeping buffered chunks."""
        with self._state_lock:
            if self._state is not RecorderState.RECORDING:
                logger.warning(f"Cannot pause while {self._state.value}")
                return False
            self._state = RecorderState.PAUSED
            self._resume_event.clear()
        logger.info("Recording paused")
        return True

    def resume(self) -> bool:
        """Continue a paused capture."""
        with self._state_lock:
            if self._state is not RecorderState.PAUSED:
                logger.warning(f"Cannot resume while {self._state.value}")
                return False
            self._state = RecorderState.RECORDING
            self._resume_event.set()
        logger.info("Recording resumed")
        return True

    def stop(self) -> RecordedAudio:
        """
        Stop recording and return the buffered audio as one WAV payload.

        Releases the device before returning.
        """
        with self._state_lock:
            was_active = self._state in (
                RecorderState.RECORDING,
                RecorderState.PAUSED,
                RecorderState.STOPPED,
            )
            self._state = RecorderState.STOPPED
        self._resume_event.set()

        self._join_reader()

        with self._frames_lock:
            frames = self._frames
            self._frames = []

        self._cleanup()
        with self._state_lock:
            self._state = RecorderState.IDLE

        if not was_active:
            logger.warning("stop() called without an active recording")
        if not frames:
            logger.warning("No audio recorded")
            return RecordedAudio(
                data=self._create_wav(b""),
                duration=0.0,
                sample_rate=self.sample_rate,
                channels=self.channels,
            )

        audio_data = b"".join(frames)

        if self._actual_channels != self.channels:
            audio_data = self._convert_channels(
                audio_data, self._actual_channels, self.channels
            )

        if self._actual_sample_rate != self.sample_rate:
            audio_data = self._resample_audio(
                audio_data, self._actual_sample_rate, self.sample_rate, self.channels
            )

        duration = len(audio_data) / (self.sample_rate * SAMPLE_WIDTH * self.channels)
        logger.info(f"Recording stopped: {duration:.1f}s")

        return RecordedAudio(
            data=self._create_wav(audio_data),
            duration=duration,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )

    def cancel(self) -> None:
        """Cancel recording, discard audio and release the device."""
        with self._state_lock:
            if self._state is RecorderState.IDLE:
                self._cleanup()
                return
            self._state = RecorderState.STOPPED
        self._resume_event.set()

        self._join_reader()
        with self._frames_lock:
            self._frames = []
        self._cleanup()

        with self._state_lock:
            self._state = RecorderState.IDLE
        logger.info("Recording cancelled")

    def _join_reader(self) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None

    def _cleanup(self) -> None:
        """Close the stream, terminate PyAudio and give up the device."""
        with self._device_guard:
            if self._stream is not None:
                try:
                    self._stream.stop_stream()
                    self._stream.close()
                except Exception:
                    logger.debug("Failed to stop/close audio stream during cleanup")
                self._stream = None

            if self._audio is not None:
                try:
                    self._audio.terminate()
                except Exception:
                    logger.debug("Failed to terminate PyAudio during cleanup")
                self._audio = None

        self.device_lock.release(self)

    def __enter__(self) -> "AudioRecorder":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    # ------------------------------------------------------------------
    # Payload conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _as_frames(audio_data: bytes, channels: int) -> np.ndarray:
        """View interleaved int16 samples as a (frames, channels) array."""
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        usable = len(audio_array) - len(audio_array) % channels
        return audio_array[:usable].reshape(-1, channels)

    def _resample_audio(
        self, audio_data: bytes, from_rate: int, to_rate: int, channels: int = 1
    ) -> bytes:
        """Linearly resample interleaved int16 audio, one channel at a time."""
        frames = self._as_frames(audio_data, channels)
        new_length = int(len(frames) * to_rate / from_rate)
        if new_length <= 0:
            return b""

        old_indices = np.arange(len(frames))
        new_indices = np.linspace(0, len(frames) - 1, new_length)
        resampled = np.column_stack(
            [np.interp(new_indices, old_indices, frames[:, ch]) for ch in range(channels)]
        )

        logger.info(f"Resampled audio from {from_rate} Hz to {to_rate} Hz")
        return resampled.astype(np.int16).tobytes()

    def _convert_channels(self, audio_data: bytes, from_channels: int, to_channels: int) -> bytes:
        """Mix interleaved int16 audio down to mono, or copy mono up to every channel."""
        frames = self._as_frames(audio_data, from_channels)
        if from_channels == 1:
            converted = np.repeat(frames, to_channels, axis=1)
        else:
            mono = frames.astype(np.int32).sum(axis=1) // from_channels
            converted = np.repeat(mono.reshape(-1, 1), to_channels, axis=1)
        return converted.astype(np.int16).tobytes()

    def _create_wav(self, audio_data: bytes) -> bytes:
        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, "wb") as wav_file:
            wav_file.setnchannels(self.channels)
            wav_file.setsampwidth(SAMPLE_WIDTH)
            wav_file.setframerate(self.sample_rate)
            wav_file.writeframes(audio_data)
        return wav_buffer.getvalue()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state in (RecorderState.RECORDING, RecorderState.PAUSED)

    @property
    def actual_channels(self) -> int:
        return self._actual_channels

    @property
    def actual_sample_rate(self) -> int:
        return self._actual_sample_rate

    @property
    def error(self) -> Exception | None:
        """Mid-session failure, if the reader thread hit one."""
        return self._error

    @property
    def elapsed_seconds(self) -> float:
        """Captured audio so far, excluding paused time."""
        with self._frames_lock:
            total = sum(len(f) for f in self._frames)
        return total / (self._actual_sample_rate * SAMPLE_WIDTH * self._actual_channels)

    @staticmethod
    def list_input_devices() -> list[dict[str, Any]]:
        """List available microphone input devices."""
        if not HAS_PYAUDIO:
            return []

        devices: list[dict[str, Any]] = []
        audio = None
        try:
            audio = pyaudio.PyAudio()
            for i in range(audio.get_device_count()):
                try:
                    info = audio.get_device_info_by_index(i)
                except (OSError, IOError):
                    continue
                max_input_channels = int(info.get("maxInputChannels", 0))
                if max_input_channels > 0:
                    devices.append(
                        {
                            "index": i,
                            "name": info.get("name", f"Device {i}"),
                            "channels": max_input_channels,
                            "sample_rate": info.get("defaultSampleRate"),
                        }
                    )
        except (OSError, IOError) as e:
            logger.error(f"Error listing input devices: {e}")
        finally:
            if audio is not None:
                audio.terminate()

        return devices
