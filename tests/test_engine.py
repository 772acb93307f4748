"""End-to-end tests through the CorrelationEngine."""

import pytest
from PIL import Image

from notegraph.batch import CancelToken
from notegraph.config import EngineConfig
from notegraph.engine import CorrelationEngine
from notegraph.errors import Cancelled, InvalidArgument, NotFoundError
from notegraph.images import ImageResolver


@pytest.fixture
def engine():
    return CorrelationEngine(EngineConfig(workers=2, chunk_size=4))


@pytest.fixture
def corpus(make_note):
    return [
        make_note("1", "Python programming basics and syntax", tags=["programming", "python", "tutorial"]),
        make_note("2", "JavaScript ES6 features and modern syntax", tags=["programming", "javascript", "web"], day=1),
        make_note("3", "Python data analysis with pandas", tags=["programming", "python", "data"], day=2),
        make_note("4", "Java object-oriented programming", tags=["programming", "java", "oop"], day=3),
        make_note("5", "Python programming basics and syntax!", tags=["python", "programming", "tutorial"], day=4),
        make_note("6", "Sourdough starter feeding schedule", tags=["baking"], day=5),
    ]


def test_hello_world_duplicates(engine, make_note):
    notes = [
        make_note("A", "hello world"),
        make_note("B", "hello world!"),
        make_note("C", "goodbye"),
    ]
    groups = engine.find_duplicates(notes, dup_threshold=0.8)
    assert [g.note_ids for g in groups] == [("A", "B")]


def test_empty_corpus(engine):
    G = engine.build_graph([])
    assert G.number_of_nodes() == 0
    assert engine.extract_clusters(G) == []
    assert engine.find_duplicates([]) == []


def test_analyze_single_pass(engine, corpus):
    analysis = engine.analyze(corpus)
    assert analysis.pairs_scored == 15
    assert set(analysis.graph.nodes) == {n.id for n in corpus}
    assert [g.note_ids for g in analysis.duplicates] == [("1", "5")]
    assert analysis.duplicates[0].suggested_action == "merge"

    clustered = sorted(nid for c in analysis.clusters for nid in c.note_ids)
    assert clustered == sorted(n.id for n in corpus)
    baking = [c for c in analysis.clusters if "6" in c.note_ids][0]
    assert baking.note_ids == ("6",)
    assert baking.name == "baking"


def test_related_through_engine(engine, corpus):
    G = engine.build_graph(corpus)
    related = engine.find_related(G, "1")
    assert related[0].note_id == "5"
    assert len(related) <= engine.config.related_k
    assert [r.score for r in related] == sorted((r.score for r in related), reverse=True)
    assert engine.find_related(G, "1", k=1) == related[:1]
    with pytest.raises(NotFoundError):
        engine.find_related(G, "missing-id", k=3)


def test_pass_is_reused_for_same_snapshot(engine, corpus):
    engine.find_duplicates(corpus)
    first = engine._last
    engine.build_graph(corpus)
    assert engine._last is first

    engine.build_graph(corpus[:3])
    assert engine._last is not first


def test_evaluate_is_symmetric(engine, corpus):
    for a in corpus:
        for b in corpus:
            if a.id != b.id:
                assert engine.evaluate(a, b) == engine.evaluate(b, a)


def test_invalid_arguments_rejected_up_front(engine, corpus):
    with pytest.raises(InvalidArgument):
        engine.build_graph(corpus, edge_threshold=1.2)
    with pytest.raises(InvalidArgument):
        engine.find_duplicates(corpus, dup_threshold=-0.5)
    with pytest.raises(InvalidArgument):
        engine.find_duplicates(corpus, limit=-1)
    assert engine._last is None


def test_duplicate_ids_rejected(engine, make_note):
    with pytest.raises(InvalidArgument):
        engine.build_graph([make_note("x"), make_note("x", "other")])


def test_cancelled_build_returns_nothing(engine, corpus):
    token = CancelToken()
    token.cancel()
    with pytest.raises(Cancelled):
        engine.build_graph(corpus, cancel=token)
    assert engine._last is None


def test_cancelled_token_checked_on_reused_pass(engine, corpus):
    engine.build_graph(corpus)
    token = CancelToken()
    token.cancel()
    with pytest.raises(Cancelled):
        engine.build_graph(corpus, cancel=token)
    with pytest.raises(Cancelled):
        engine.find_duplicates(corpus, cancel=token)


def test_limit(engine, make_note):
    notes = [make_note(f"{g}{i}", f"group {g} text") for g in "abc" for i in range(2)]
    assert len(engine.find_duplicates(notes, 0.95)) == 3
    assert len(engine.find_duplicates(notes, 0.95, limit=2)) == 2


def test_images_feed_into_scores(engine, make_note, gradient_image):
    img = gradient_image()
    notes = [
        make_note("a", "receipt", image=img),
        make_note("b", "receipt", image=img),
        make_note("c", "receipt", image=gradient_image(reverse=True)),
        make_note("d", "receipt", image=b"broken"),
    ]
    G = engine.build_graph(notes, edge_threshold=0.0)
    assert G["a"]["b"]["image_score"] == 1.0
    assert G["a"]["c"]["image_score"] == 0.0
    assert G["a"]["d"]["weight"] == 1.0
    assert len(engine.fingerprints) == 4


def test_deterministic_outputs(corpus):
    first = CorrelationEngine(EngineConfig(workers=1))
    second = CorrelationEngine(EngineConfig(workers=4, chunk_size=1))
    G1, G2 = first.build_graph(corpus), second.build_graph(corpus)
    assert first.find_related(G1, "3", 5) == second.find_related(G2, "3", 5)
    assert first.extract_clusters(G1) == second.extract_clusters(G2)


def test_rewritten_image_invalidates_reused_pass(tmp_path, make_note, gradient_image):
    (tmp_path / "a.png").write_bytes(gradient_image())
    (tmp_path / "b.png").write_bytes(gradient_image())
    engine = CorrelationEngine(EngineConfig(workers=1), resolver=ImageResolver(tmp_path))
    notes = [make_note("a", "scan", image="a.png"), make_note("b", "scan", image="b.png")]
    assert engine.build_graph(notes, 0.0)["a"]["b"]["image_score"] == 1.0

    (tmp_path / "b.png").write_bytes(gradient_image(reverse=True))
    assert engine.build_graph(notes, 0.0)["a"]["b"]["image_score"] == 0.0


def test_oversized_image_drops_only_its_signal(engine, make_note, gradient_image, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    notes = [make_note("a", "scan", image=gradient_image()), make_note("b", "scan")]
    G = engine.build_graph(notes, 0.0)
    assert set(G) == {"a", "b"}
    assert G["a"]["b"]["image_score"] == 0.0
    assert G["a"]["b"]["weight"] == 1.0
