from stream_registry import StreamRegistry
import os
import threading


class TestStreamRegistry:
    def test_register_and_resolve(self, tmp_path):
        registry = StreamRegistry()
        media = tmp_path / "movie.mkv"
        media.write_bytes(b"x")

        stream_id = registry.register(str(media))

        assert registry.resolve(stream_id) == str(media)
        assert stream_id in registry
        assert len(registry) == 1

    def test_register_stores_absolute_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        registry = StreamRegistry()

        stream_id = registry.register("relative.mp4")

        assert registry.resolve(stream_id) == os.path.join(str(tmp_path), "relative.mp4")

    def test_same_path_gets_distinct_ids(self):
        registry = StreamRegistry()
        first = registry.register("/media/a.mp4")
        second = registry.register("/media/a.mp4")

        assert first != second
        assert len(registry) == 2

    def test_ids_are_opaque_hex(self):
        registry = StreamRegistry()
        stream_id = registry.register("/media/a.mp4")

        assert len(stream_id) == 32
        int(stream_id, 16)

    def test_resolve_unknown(self):
        assert StreamRegistry().resolve("does-not-exist") is None

    def test_remove(self):
        registry = StreamRegistry()
        stream_id = registry.register("/media/a.mp4")

        assert registry.remove(stream_id) is True
        assert registry.resolve(stream_id) is None
        assert registry.remove(stream_id) is False

    def test_clear(self):
        registry = StreamRegistry()
        ids = [registry.register(f"/media/{i}.mp4") for i in range(5)]

        registry.clear()

        assert len(registry) == 0
        assert all(registry.resolve(i) is None for i in ids)

    def test_concurrent_registration(self):
        registry = StreamRegistry()
        results = []
        results_lock = threading.Lock()

        def worker(n):
            ids = [registry.register(f"/media/{n}-{i}.mp4") for i in range(50)]
            with results_lock:
                results.extend(ids)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 400
        assert len(set(results)) == 400
        assert len(registry) == 400
