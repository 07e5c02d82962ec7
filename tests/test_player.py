from fake_mpv import FakeMpvTransport
from mpv_ipc import MpvIpc
from mpv_process import MpvProcess, ProcessHandle
from player import MpvPlayer, PlaybackState, PlayerNotInitializedError
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock


@pytest_asyncio.fixture
async def transport():
    fake = FakeMpvTransport(events_before_reply=1)
    await fake.open()
    return fake


@pytest.fixture
def player(transport, tmp_path):
    """A player whose process already holds a connected IPC client"""
    process = MpvProcess(endpoint=str(tmp_path / "mpv.sock"))
    proc = MagicMock()
    proc.pid = 1234
    proc.returncode = None
    process._handle = ProcessHandle(
        process=proc, ipc=MpvIpc(transport, max_reads=100, response_timeout=1.0))
    return MpvPlayer(process)


class TestNotInitialized:
    @pytest.mark.asyncio
    async def test_operations_fail_before_start(self, tmp_path):
        player = MpvPlayer(MpvProcess(endpoint=str(tmp_path / "mpv.sock")))

        assert player.is_initialized is False
        with pytest.raises(PlayerNotInitializedError, match="MPV not initialized"):
            await player.pause()
        with pytest.raises(PlayerNotInitializedError):
            await player.get_state()

    @pytest.mark.asyncio
    async def test_ensure_started_starts_once(self):
        process = MagicMock()
        process.is_running = False
        process.start = AsyncMock()
        player = MpvPlayer(process)

        await player.ensure_started()
        process.is_running = True
        await player.ensure_started()

        process.start.assert_awaited_once()


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_plain_url(self, player, transport):
        await player.load("http://example.com/a.mkv")

        assert transport.sent("loadfile") == [["loadfile", "http://example.com/a.mkv", "replace"]]
        assert transport.sent("set_property") == [
            ["set_property", "http-header-fields", ""],
            ["set_property", "start", "none"],
        ]
        assert player.current_url == "http://example.com/a.mkv"

    @pytest.mark.asyncio
    async def test_load_with_headers_and_start(self, player, transport):
        await player.load(
            "http://jellyfin.local/Videos/1/stream",
            start_position=42.5,
            headers={"X-Emby-Token": "abc", "User-Agent": "bridge"},
        )

        assert transport.properties["http-header-fields"] == "X-Emby-Token: abc\r\nUser-Agent: bridge"
        assert transport.properties["start"] == "42.5"
        # Options are applied before the file is loaded
        assert transport.commands[-1][0] == "loadfile"
        assert player.last_position == 42.5

    @pytest.mark.asyncio
    async def test_next_load_does_not_inherit_options(self, player, transport):
        await player.load(
            "http://jellyfin.local/Videos/1/stream",
            start_position=600,
            headers={"X-Emby-Token": "abc"},
        )
        await player.load("/media/local.mkv")

        assert transport.properties["http-header-fields"] == ""
        assert transport.properties["start"] == "none"
        assert player.last_position == 0.0

    @pytest.mark.asyncio
    async def test_option_failure_does_not_block_load(self, player, transport):
        transport.unavailable.add("http-header-fields")
        await player.load("http://example.com/a.mkv", headers={"X-Emby-Token": "abc"})
        assert len(transport.sent("loadfile")) == 1

    @pytest.mark.asyncio
    async def test_stop_clears_cached_url(self, player, transport):
        await player.load("http://example.com/a.mkv", start_position=10)
        await player.stop()

        assert transport.sent("stop") == [["stop"]]
        assert player.current_url is None
        assert player.last_position == 0.0


class TestControls:
    @pytest.mark.asyncio
    async def test_pause_and_play(self, player, transport):
        await player.pause()
        assert transport.properties["pause"] is True
        await player.play()
        assert transport.properties["pause"] is False

    @pytest.mark.asyncio
    async def test_toggle_pause_twice_restores_state(self, player, transport):
        assert await player.toggle_pause() is True
        assert await player.toggle_pause() is False
        assert transport.properties["pause"] is False

    @pytest.mark.asyncio
    async def test_seek(self, player, transport):
        await player.seek(30)
        await player.seek_relative(-10)
        assert transport.sent("seek") == [["seek", 30, "absolute"], ["seek", -10, "relative"]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,expected", [(150, 100), (-5, 0), (55, 55)])
    async def test_volume_is_clamped(self, player, transport, requested, expected):
        await player.set_volume(requested)
        assert transport.properties["volume"] == expected
        assert await player.get_volume() == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,expected", [(10.0, 4.0), (0.01, 0.1), (1.25, 1.25)])
    async def test_speed_is_clamped(self, player, transport, requested, expected):
        await player.set_speed(requested)
        assert transport.properties["speed"] == expected

    @pytest.mark.asyncio
    async def test_mute(self, player, transport):
        await player.set_mute(True)
        assert await player.is_muted() is True
        assert await player.toggle_mute() is False
        assert transport.properties["mute"] is False

    @pytest.mark.asyncio
    async def test_audio_track(self, player, transport):
        await player.set_audio_track(2)
        assert transport.properties["aid"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index,expected", [(0, "no"), (-1, "no"), (3, 3)])
    async def test_subtitle_track(self, player, transport, index, expected):
        await player.set_subtitle_track(index)
        assert transport.properties["sid"] == expected

    @pytest.mark.asyncio
    async def test_fullscreen(self, player, transport):
        assert await player.is_fullscreen() is False
        assert await player.toggle_fullscreen() is True
        await player.set_fullscreen(False)
        assert transport.properties["fullscreen"] is False


class TestState:
    @pytest.mark.asyncio
    async def test_state_snapshot(self, player, transport):
        transport.properties["volume"] = 72.6
        state = await player.get_state()

        assert state == PlaybackState(
            position=12.5,
            duration=100.0,
            is_playing=True,
            is_paused=False,
            volume=73,
            is_muted=False,
            filename="movie.mkv",
            media_title="Movie",
        )
        assert player.last_position == 12.5

    @pytest.mark.asyncio
    async def test_state_defaults_when_idle(self, player, transport):
        # An idle mpv has no file, so most properties are unavailable
        transport.unavailable.update(
            {"pause", "volume", "time-pos", "duration", "mute", "filename", "media-title"})

        state = await player.get_state()

        assert state.to_dict() == {
            "position": 0.0,
            "duration": 0.0,
            "is_playing": False,
            "is_paused": True,
            "volume": 100,
            "is_muted": False,
            "filename": None,
            "media_title": None,
        }

    @pytest.mark.asyncio
    async def test_position_and_duration_default_to_zero(self, player, transport):
        transport.unavailable.update({"time-pos", "duration"})
        assert await player.get_position() == 0.0
        assert await player.get_duration() == 0.0

    @pytest.mark.asyncio
    async def test_null_title_uses_default(self, player, transport):
        transport.properties["media-title"] = None
        state = await player.get_state()
        assert state.media_title is None
        assert state.filename == "movie.mkv"
