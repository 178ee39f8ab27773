"""
Concurrency tests for the SQLite stores.

Verifies that concurrent saves never share a version number or leave two
current versions, and that concurrent consumers never process the same
queue item twice. Each worker thread opens its own connection, as
separate kitchen processes would.
"""

import threading

from kitchen.embedding_store import EmbeddingStore
from kitchen.enrichment_queue import COMPLETED, EnrichmentQueue
from kitchen.processor import QueueProcessor
from kitchen.types import RecipeInput, VersionInput
from kitchen.version_store import VersionStore


def _run_threads(target, args_list):
    errors = []

    def wrapped(*args):
        try:
            target(*args)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=wrapped, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return errors


class TestConcurrentSaves:

    def test_parallel_saves_get_distinct_numbers(self, tmp_path):
        db_path = tmp_path / "recipes.db"
        setup = VersionStore(db_path)
        recipe, _ = setup.create(
            RecipeInput(title="Shared", short_id="shared"),
            VersionInput(title="Shared", content="initial"),
        )

        num_workers = 4
        saves_per_worker = 5

        def worker(worker_id):
            store = VersionStore(db_path)
            try:
                for i in range(saves_per_worker):
                    store.save(recipe.id, VersionInput(
                        title="Shared", content=f"worker {worker_id} save {i}",
                    ))
            finally:
                store.close()

        errors = _run_threads(worker, [(w,) for w in range(num_workers)])
        assert errors == []

        history = setup.get_version_history(recipe.id)
        numbers = sorted(v.version_number for v in history)
        assert numbers == list(range(1, num_workers * saves_per_worker + 2))
        assert sum(1 for v in history if v.is_current) == 1
        assert setup.read(recipe.id).current_version_id == history[0].id
        setup.close()

    def test_parallel_saves_on_shared_store(self, version_store):
        recipe, _ = version_store.create(
            RecipeInput(title="Shared", short_id="shared"),
            VersionInput(title="Shared", content="initial"),
        )

        def worker(worker_id):
            for i in range(5):
                version_store.save(recipe.id, VersionInput(
                    title="Shared", content=f"worker {worker_id} save {i}",
                ))

        errors = _run_threads(worker, [(w,) for w in range(4)])
        assert errors == []
        assert version_store.max_version(recipe.id) == 21
        current = [v for v in version_store.get_version_history(recipe.id) if v.is_current]
        assert len(current) == 1

    def test_parallel_creates_same_short_id(self, tmp_path):
        db_path = tmp_path / "recipes.db"
        VersionStore(db_path).close()
        outcomes = []
        lock = threading.Lock()

        def worker(worker_id):
            store = VersionStore(db_path)
            try:
                store.create(
                    RecipeInput(title=f"W{worker_id}", short_id="same"),
                    VersionInput(title=f"W{worker_id}", content=f"body {worker_id}"),
                )
                result = "created"
            except Exception as e:
                result = type(e).__name__
            finally:
                store.close()
            with lock:
                outcomes.append(result)

        assert _run_threads(worker, [(w,) for w in range(4)]) == []
        assert outcomes.count("created") == 1
        assert outcomes.count("DuplicateError") == 3


class TestConcurrentProcessors:

    def test_two_processors_never_double_process(self, tmp_path, pipeline):
        versions = VersionStore(tmp_path / "recipes.db")
        producer = EnrichmentQueue(tmp_path / "queue.db")
        for n in range(20):
            recipe, version = versions.create(
                RecipeInput(title=f"Recipe {n}", short_id=f"r{n}"),
                VersionInput(title=f"Recipe {n}", content=f"content {n}"),
            )
            producer.add(version.title, recipe.short_id, version.id)

        processed: list[str] = []
        processed_lock = threading.Lock()

        def worker():
            queue = EnrichmentQueue(tmp_path / "queue.db")
            embeddings = EmbeddingStore(tmp_path / "embeddings.db")
            processor = QueueProcessor(versions, embeddings, queue, pipeline)
            try:
                while True:
                    item = processor.process_next()
                    if item is None:
                        return
                    with processed_lock:
                        processed.append(item.id)
            finally:
                queue.close()
                embeddings.close()

        assert _run_threads(worker, [(), ()]) == []
        assert len(processed) == 20
        assert len(set(processed)) == 20
        assert producer.stats()[COMPLETED] == 20

        producer.close()
        versions.close()
