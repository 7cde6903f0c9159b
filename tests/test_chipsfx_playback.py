from __future__ import annotations

import threading

import numpy as np
import pytest

import chipsfx.playback as playback
from chipsfx.config import DEFAULT_PARAMS
from chipsfx.errors import InvalidParametersError, OutputUnavailableError
from chipsfx.playback import LivePlayer, Mixer, MonitorTap, PlaybackBackend, play_audio
from chipsfx.synth import voice_sample_count


class _FakeStream:
    def __init__(self, sample_rate: int, pull: playback.PullFn) -> None:
        self.sample_rate = sample_rate
        self.pull = pull
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _ThreadedStream(_FakeStream):
    """Pulls blocks on its own thread, like a device callback."""

    def __init__(self, sample_rate: int, pull: playback.PullFn) -> None:
        super().__init__(sample_rate, pull)
        self.blocks: list[np.ndarray] = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            self.blocks.append(self.pull(256))
            self._stop.wait(0.001)

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=1.0)
        super().close()


def _backend(streams: list[_FakeStream], stream_cls: type[_FakeStream] = _FakeStream) -> PlaybackBackend:
    def _open(sample_rate: int, pull: playback.PullFn) -> _FakeStream:
        stream = stream_cls(sample_rate, pull)
        streams.append(stream)
        return stream

    return PlaybackBackend(name="fake", open_stream=_open)


class TestMonitorTap:
    def test_keeps_most_recent_samples(self) -> None:
        tap = MonitorTap(size=4)
        tap.push(np.array([1.0, 2.0, 3.0]))
        tap.push(np.array([4.0, 5.0]))
        assert tap.snapshot().tolist() == [2.0, 3.0, 4.0, 5.0]
        tap.push(np.arange(10.0))
        assert tap.snapshot().tolist() == [6.0, 7.0, 8.0, 9.0]

    def test_snapshot_is_a_copy(self) -> None:
        tap = MonitorTap(size=4)
        snap = tap.snapshot()
        snap[:] = 1.0
        assert np.all(tap.snapshot() == 0.0)

    def test_snapshot_bytes_centre_on_128(self) -> None:
        tap = MonitorTap(size=3)
        tap.push(np.array([0.0, 1.0, -1.0]))
        assert tap.snapshot_bytes().tolist() == [128, 255, 0]


class TestMixer:
    def test_sums_concurrent_voices(self) -> None:
        mixer = Mixer(MonitorTap(size=4))
        long_voice = mixer.add(np.full(4, 0.25))
        short_voice = mixer.add(np.full(2, 0.5))
        block = mixer.pull(4)
        assert block.tolist() == [0.75, 0.75, 0.25, 0.25]
        assert long_voice.done
        assert short_voice.done
        assert mixer.active_count == 0
        assert mixer.tap.snapshot().tolist() == block.tolist()

    def test_voices_advance_independently(self) -> None:
        mixer = Mixer()
        first = mixer.add(np.arange(6.0) / 10)
        assert mixer.pull(2).tolist() == pytest.approx([0.0, 0.1])
        mixer.add(np.full(2, 0.5))
        assert mixer.pull(2).tolist() == pytest.approx([0.7, 0.8])
        assert not first.done
        assert mixer.pull(4).tolist() == pytest.approx([0.4, 0.5, 0.0, 0.0])
        assert first.done

    def test_mix_is_clipped(self) -> None:
        mixer = Mixer()
        mixer.add(np.full(3, 0.8))
        mixer.add(np.full(3, 0.8))
        assert np.all(mixer.pull(3) == 1.0)

    def test_empty_voice_is_done_immediately(self) -> None:
        mixer = Mixer()
        assert mixer.add(np.zeros(0)).done
        assert mixer.active_count == 0


class TestLivePlayer:
    def test_play_schedules_full_voice(self) -> None:
        streams: list[_FakeStream] = []
        with LivePlayer(_backend(streams)) as player:
            voice = player.play(DEFAULT_PARAMS)
            assert voice.frame_count == voice_sample_count(DEFAULT_PARAMS)
            pulled = streams[0].pull(voice.frame_count)
            assert voice.done
            assert np.max(np.abs(pulled)) > 0.1
            assert np.any(player.monitor.snapshot() != 0.0)
        assert streams[0].closed

    def test_stream_opened_once_for_many_voices(self) -> None:
        streams: list[_FakeStream] = []
        player = LivePlayer(_backend(streams), seed=3)
        player.play(DEFAULT_PARAMS)
        player.play(DEFAULT_PARAMS.with_changes(wave_type="noise"))
        assert len(streams) == 1
        assert player.mixer.active_count == 2
        player.close()

    def test_invalid_params_rejected_before_output_opens(self) -> None:
        streams: list[_FakeStream] = []
        player = LivePlayer(_backend(streams))
        with pytest.raises(InvalidParametersError):
            player.play({**DEFAULT_PARAMS.to_mapping(), "volume": 1.5})
        assert streams == []

    @pytest.mark.parametrize("sample_rate", [0, -1])
    def test_non_positive_sample_rate_rejected_before_output_opens(self, sample_rate: int) -> None:
        streams: list[_FakeStream] = []
        with pytest.raises(InvalidParametersError):
            LivePlayer(_backend(streams), sample_rate=sample_rate)
        assert streams == []

    def test_missing_backend_is_output_unavailable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(playback, "_load_backend", lambda: None)
        with pytest.raises(OutputUnavailableError):
            LivePlayer().play(DEFAULT_PARAMS)

    def test_backend_open_failure_propagates(self) -> None:
        def _open(sample_rate: int, pull: playback.PullFn) -> _FakeStream:
            raise OutputUnavailableError("no device")

        player = LivePlayer(PlaybackBackend(name="broken", open_stream=_open))
        with pytest.raises(OutputUnavailableError):
            player.play(DEFAULT_PARAMS)


def test_play_audio_blocks_until_voice_is_consumed() -> None:
    streams: list[_FakeStream] = []
    samples = np.linspace(-0.5, 0.5, 1_000)
    play_audio(samples, sample_rate=44_100, backend=_backend(streams, _ThreadedStream))
    stream = streams[0]
    assert isinstance(stream, _ThreadedStream)
    assert stream.closed
    # The stream may pull silent blocks before the voice arrives.
    mixed = np.concatenate(stream.blocks)
    start = int(np.flatnonzero(mixed)[0])
    assert np.allclose(mixed[start : start + samples.size], samples)
