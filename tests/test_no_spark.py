#!/usr/bin/env python3
"""
Unit Tests - No Spark Required
==============================
Tests the responder core with the in-process engine; no Java needed.

Run with:
    pytest tests/test_no_spark.py
    python tests/test_no_spark.py
"""

import json
import os
import random
import subprocess
import sys
from collections import defaultdict

import pytest

# Add parent to path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from core.config import Config, ResponderConfig
from core.errors import (
    ColumnOverflowError, ConfigurationError, DataConsistencyError, InvalidEmbeddingError,
    MissingTableEntryError, StageError, StorageError,
)
from core.metrics import ResponderMetrics, merge_all
from core.modexp import ModPowCache, mod_pow, mod_pow_naive, product_mod
from engine.column_reducer import reduce_partials_local
from engine.exp_table import ExpTable, ExpTableStore, SUCCESS_MARKER
from engine.responder import LocalBroadcast, LocalResponder, effective_query
from engine.row_aggregator import DirectRowAggregator, PrecomputedJoinRowAggregator
from reader.record_reader import read_records_jsonl
from reader.selector_router import RowBucket, SelectorRouter, row_index
from schema.query import EmbeddingParams, Query, QueryInfo, QueryStore
from schema.record import Record, embed_value, join_chunks
from schema.response import Response
from writer.response_writer import ResponseAssembler, ResponseStore


N = 61 * 53
N_SQUARED = N * N


# =============================================================================
# Helpers
# =============================================================================

def make_query(num_rows=8, num_columns=256, chunk_bit_size=4, chunks_per_element=2,
               limit=True, cap=2, seed=7, n_squared=N_SQUARED, persisted=False):
    rng = random.Random(seed)
    info = QueryInfo(
        identifier=f"q-{seed}",
        query_type="test",
        num_rows=num_rows,
        num_columns=num_columns,
        hash_key="secret",
        limit_hits_per_selector=limit,
        max_hits_per_selector=cap,
        use_exp_lookup_table=persisted,
    )
    elements = {i: rng.randrange(2, n_squared) for i in range(num_rows)}
    return Query(
        query_info=info,
        n_squared=n_squared,
        elements=elements,
        embedding=EmbeddingParams(chunk_bit_size=chunk_bit_size, chunks_per_element=chunks_per_element),
    )


def make_records(num_records=150, num_selectors=25, embedding=None, seed=11, drop_rate=0.1):
    embedding = embedding or EmbeddingParams(chunk_bit_size=4, chunks_per_element=2)
    rng = random.Random(seed)
    max_chunk = embedding.max_chunk_value
    return [
        Record(
            selector=f"s{rng.randrange(num_selectors)}",
            keep=rng.random() >= drop_rate,
            chunks=tuple(rng.randint(0, max_chunk) for _ in range(embedding.chunks_per_element)),
        )
        for _ in range(num_records)
    ]


def expected_columns(query, records):
    """Straightforward evaluation of the response: one pass, no partitions."""
    info = query.query_info
    rows = defaultdict(list)
    for record in records:
        if record.keep:
            row = row_index(record.selector, info.hash_key, info.num_rows)
            rows[row].append((record.selector, tuple(record.chunks)))

    columns = {}
    for row, entries in rows.items():
        entries.sort()
        if info.limit_hits_per_selector:
            seen = defaultdict(int)
            limited = []
            for selector, chunks in entries:
                if seen[selector] < info.max_hits_per_selector:
                    limited.append((selector, chunks))
                seen[selector] += 1
            entries = limited
        base = query.elements[row]
        column = 0
        for _, chunks in entries:
            for chunk in chunks:
                columns[column] = columns.get(column, 1) * pow(base, chunk, query.n_squared) % query.n_squared
                column += 1
    return tuple((j, columns.get(j, 1)) for j in range(info.num_columns))


def selector_for_row(row, hash_key, num_rows, prefix="sel"):
    for i in range(10_000):
        candidate = f"{prefix}{i}"
        if row_index(candidate, hash_key, num_rows) == row:
            return candidate
    raise AssertionError(f"no selector found for row {row}")


# =============================================================================
# Selector routing
# =============================================================================

def test_row_index_deterministic():
    """Same selector, same key, same row: in this process and in a fresh one."""
    print("Testing row_index determinism...")
    rows = [row_index("alice@example.com", "k1", 1000) for _ in range(5)]
    assert len(set(rows)) == 1
    assert 0 <= rows[0] < 1000

    code = (
        "import sys; sys.path.insert(0, %r); "
        "from reader.selector_router import row_index; "
        "print(row_index('alice@example.com', 'k1', 1000))" % ROOT
    )
    env = dict(os.environ, PYTHONHASHSEED="12345")
    out = subprocess.run([sys.executable, "-c", code], env=env, capture_output=True, text=True, check=True)
    assert int(out.stdout.strip()) == rows[0]
    print("  ✓ row_index OK")


def test_row_index_depends_on_key():
    rows_a = [row_index(f"s{i}", "key-a", 1 << 20) for i in range(50)]
    rows_b = [row_index(f"s{i}", "key-b", 1 << 20) for i in range(50)]
    assert rows_a != rows_b
    assert all(row_index(f"s{i}", "k", 1) == 0 for i in range(10))


def test_route_filters_and_validates():
    query = make_query()
    metrics = ResponderMetrics()
    router = SelectorRouter(query.query_info, query.embedding, metrics)

    assert router.route(Record("a", False, (1, 2))) is None
    row, entry = router.route(Record("a", True, [3, 4]))
    assert row == router.row_for("a")
    assert entry == ("a", (3, 4))
    assert metrics.records_received == 2
    assert metrics.records_filtered == 1

    with pytest.raises(InvalidEmbeddingError):
        router.route(Record("a", True, (1,)))
    with pytest.raises(InvalidEmbeddingError):
        router.route(Record("a", True, (1, 16)))  # 4-bit chunks


def test_hit_limit_exact_and_canonical():
    query = make_query(limit=True, cap=3)
    metrics = ResponderMetrics()
    router = SelectorRouter(query.query_info, query.embedding, metrics)

    entries = [("hot", (c, 0)) for c in (9, 1, 7, 3, 5, 2, 8, 0, 6, 4)] + [("cold", (1, 1))]
    random.Random(3).shuffle(entries)
    bucket = router.build_bucket(0, entries)

    assert bucket.chunk_vectors == ((1, 1), (0, 0), (1, 0), (2, 0))
    assert metrics.records_kept == 4
    assert metrics.hits_dropped == 7
    assert metrics.limit_triggers == 1
    assert metrics.hits_per_selector == {"hot": 3, "cold": 1}


def test_hit_limit_disabled_keeps_everything():
    query = make_query(limit=False)
    metrics = ResponderMetrics()
    router = SelectorRouter(query.query_info, query.embedding, metrics)
    bucket = router.build_bucket(2, [("x", (i % 16, 0)) for i in range(40)])
    assert bucket.num_hits == 40
    assert metrics.hits_dropped == 0


# =============================================================================
# Modular arithmetic and the exponentiation table
# =============================================================================

def test_mod_pow_matches_naive():
    """Square-and-multiply agrees with repeated multiplication."""
    print("Testing mod_pow...")
    rng = random.Random(1)
    for _ in range(50):
        base = rng.randrange(0, N_SQUARED)
        power = rng.randrange(0, 300)
        assert mod_pow(base, power, N_SQUARED) == mod_pow_naive(base, power, N_SQUARED)
    assert mod_pow(12345, 0, N_SQUARED) == 1
    with pytest.raises(ValueError):
        mod_pow(2, -1, N_SQUARED)
    print("  ✓ mod_pow OK")


def test_mod_pow_cache_evicts_least_recent():
    cache = ModPowCache(max_entries=2)
    assert cache.get(3, 5, 1000) == 243
    cache.get(3, 6, 1000)
    cache.get(3, 5, 1000)  # refresh
    cache.get(3, 7, 1000)  # evicts (3, 6)
    assert len(cache) == 2
    assert cache.hits == 1
    cache.get(3, 6, 1000)
    assert cache.misses == 4


def test_exp_table_matches_direct_computation():
    query = make_query(num_rows=4, chunk_bit_size=5)
    table = ExpTable.compute(query)
    assert table.num_elements == 4
    for element in range(4):
        powers = table.power_list(element)
        assert [p for p, _ in powers] == list(range(32))
        for power, value in powers:
            assert value == pow(query.elements[element], power, query.n_squared)


def test_exp_table_missing_entry():
    query = make_query(num_rows=4)
    table = ExpTable.compute(query, elements=[0, 1])
    with pytest.raises(MissingTableEntryError):
        table.powers_for(3)
    with pytest.raises(MissingTableEntryError):
        table.lookup(0, 99)

    aggregator = PrecomputedJoinRowAggregator(LocalBroadcast(query), ResponderMetrics())
    bucket = RowBucket(row_index=3, chunk_vectors=((1, 2),))
    with pytest.raises(MissingTableEntryError):
        aggregator.aggregate(bucket, None)
    with pytest.raises(MissingTableEntryError):
        aggregator.aggregate(bucket, {1: 5})


def test_exp_table_store_roundtrip(tmp_path):
    query = make_query(num_rows=3)
    store = ExpTableStore(str(tmp_path))
    assert not store.exists(query)

    table, source = store.load_or_compute(query, persist=True)
    assert source == "computed"
    assert store.exists(query)
    assert os.path.exists(os.path.join(store.path_for(query), SUCCESS_MARKER))

    loaded, source = store.load_or_compute(query, persist=True)
    assert source == "loaded"
    for element in range(3):
        assert loaded.power_list(element) == table.power_list(element)


def test_exp_table_without_marker_is_recomputed(tmp_path):
    query = make_query(num_rows=3)
    store = ExpTableStore(str(tmp_path))
    os.makedirs(store.path_for(query))
    with open(os.path.join(store.path_for(query), "part-00000"), "w") as f:
        f.write("0 0 1\n")

    assert not store.exists(query)
    table, source = store.load_or_compute(query, persist=True)
    assert source == "computed"
    assert store.load(query).power_list(2) == table.power_list(2)


def test_query_hash_is_stable():
    assert make_query(seed=1).query_hash() == make_query(seed=1).query_hash()
    assert make_query(seed=1).query_hash() != make_query(seed=2).query_hash()


# =============================================================================
# Row aggregation, column reduction, assembly
# =============================================================================

def test_row_partials_layout():
    """Chunks of consecutive hits land in consecutive columns."""
    query = make_query(num_rows=2, num_columns=6)
    aggregator = DirectRowAggregator(LocalBroadcast(query), ResponderMetrics(), use_local_cache=False)
    bucket = RowBucket(row_index=1, chunk_vectors=((1, 2), (3, 0)))
    base = query.elements[1]
    assert aggregator(bucket) == [
        (0, pow(base, 1, N_SQUARED)),
        (1, pow(base, 2, N_SQUARED)),
        (2, pow(base, 3, N_SQUARED)),
        (3, 1),
    ]


def test_column_overflow_is_fatal():
    query = make_query(num_rows=2, num_columns=3)
    aggregator = DirectRowAggregator(LocalBroadcast(query), ResponderMetrics())
    with pytest.raises(ColumnOverflowError) as exc:
        aggregator(RowBucket(row_index=0, chunk_vectors=((1, 2), (3, 4))))
    assert exc.value.column == 3
    assert exc.value.num_columns == 3
    # Limiting hits per selector cannot help when distinct selectors share a row
    assert "num_columns" in str(exc.value)
    assert "limit_hits_per_selector" not in str(exc.value)


def test_column_overflow_through_responder():
    query = make_query(num_rows=1, num_columns=3, limit=False)
    records = [Record("a", True, (1, 1)), Record("b", True, (2, 2))]
    with pytest.raises(StageError) as exc:
        LocalResponder(query, ResponderConfig()).compute(records, num_partitions=2)
    assert exc.value.stage == "row_aggregation"
    assert isinstance(exc.value.__cause__, ColumnOverflowError)


def test_invalid_embedding_through_responder():
    query = make_query()
    with pytest.raises(StageError) as exc:
        LocalResponder(query, ResponderConfig()).compute([Record("a", True, (1, 2, 3))])
    assert exc.value.stage == "selector_routing"


def test_bad_jsonl_record_fails_in_routing_stage(tmp_path):
    """Records read lazily fail inside the routing stage, not outside every stage."""
    params = EmbeddingParams(chunk_bit_size=4, chunks_per_element=2)
    query = make_query()
    oversized = tmp_path / "oversized.json"
    oversized.write_text(json.dumps({"selector": "a", "value": 1 << 40}) + "\n")
    with pytest.raises(StageError) as exc:
        LocalResponder(query, ResponderConfig()).compute(read_records_jsonl(str(oversized), params))
    assert exc.value.stage == "selector_routing"
    assert isinstance(exc.value.__cause__, InvalidEmbeddingError)

    garbled = tmp_path / "garbled.json"
    garbled.write_text(json.dumps({"selector": "a", "chunks": "x y"}) + "\n")
    with pytest.raises(StageError) as exc:
        LocalResponder(query, ResponderConfig()).compute(read_records_jsonl(str(garbled), params))
    assert exc.value.stage == "selector_routing"


def test_reducer_permutation_invariance():
    """Any order and any partitioning of the partials yields the same columns."""
    print("Testing column reducer...")
    rng = random.Random(5)
    partials = [(rng.randrange(10), rng.randrange(1, N_SQUARED)) for _ in range(300)]
    expected = {}
    for column, value in partials:
        expected[column] = expected.get(column, 1) * value % N_SQUARED

    for strategy in ("reduce_by_key", "group_by_key"):
        for num_partitions in (1, 4, 13):
            shuffled = list(partials)
            rng.shuffle(shuffled)
            partitions = [shuffled[i::num_partitions] for i in range(num_partitions)]
            assert reduce_partials_local(partitions, N_SQUARED, strategy) == expected
    with pytest.raises(ValueError):
        reduce_partials_local([partials], N_SQUARED, "sort")
    print("  ✓ Reducer OK")


def test_product_mod_empty_is_identity():
    assert product_mod([], N_SQUARED) == 1


def test_assembler_fills_identity():
    info = make_query(num_columns=5).query_info
    response = ResponseAssembler(info).assemble({1: 77, 3: 99})
    assert response.columns == ((0, 1), (1, 77), (2, 1), (3, 99), (4, 1))
    assert response.num_columns == 5
    assert response.column(3) == 99
    assert response.as_dict() == {0: 1, 1: 77, 2: 1, 3: 99, 4: 1}

    with pytest.raises(DataConsistencyError):
        ResponseAssembler(info).assemble({5: 2})


def test_toy_scenario():
    """Two rows, one hit each with chunk 5, base 2: column 0 = 2^5 * 2^5 mod 3233."""
    info = QueryInfo(identifier="toy", query_type="toy", num_rows=2, num_columns=1, hash_key="k")
    query = Query(
        query_info=info,
        n_squared=3233,
        elements={0: 2, 1: 2},
        embedding=EmbeddingParams(chunk_bit_size=3, chunks_per_element=1),
    )
    records = [
        Record(selector_for_row(0, "k", 2), True, (5,)),
        Record(selector_for_row(1, "k", 2), True, (5,)),
    ]
    # One record: the row emits 2^5 in column 0 and reducing it alone keeps it
    aggregator = DirectRowAggregator(LocalBroadcast(query), ResponderMetrics())
    assert aggregator(RowBucket(row_index=0, chunk_vectors=((5,),))) == [(0, 32)]
    for strategy in ("reduce_by_key", "group_by_key"):
        assert reduce_partials_local([[(0, 32)]], 3233, strategy) == {0: 32}

    for row_mode in ("direct", "precomputed_join"):
        config = ResponderConfig(row_mode=row_mode)
        single = LocalResponder(query, config).compute(records[:1], num_partitions=2)
        assert single.response.columns == ((0, 32),)

        run = LocalResponder(query, config).compute(records, num_partitions=2)
        assert run.response.columns == ((0, 1024),)
        assert run.metrics.rows_aggregated == 2


def test_empty_input_gives_all_identity():
    query = make_query(num_columns=4)
    run = LocalResponder(query, ResponderConfig()).compute([])
    assert run.response.columns == ((0, 1), (1, 1), (2, 1), (3, 1))
    assert run.metrics.records_received == 0


# =============================================================================
# Local engine
# =============================================================================

@pytest.mark.parametrize("row_mode", ["direct", "precomputed_join"])
@pytest.mark.parametrize("reduce_strategy", ["reduce_by_key", "group_by_key"])
@pytest.mark.parametrize("limit", [True, False])
def test_local_responder_partition_invariance(row_mode, reduce_strategy, limit):
    query = make_query(limit=limit, cap=2)
    records = make_records(num_records=120)
    expected = expected_columns(query, records)

    for num_partitions in (1, 3, 8):
        config = ResponderConfig(row_mode=row_mode, reduce_strategy=reduce_strategy,
                                 use_local_cache=num_partitions != 3)
        run = LocalResponder(query, config).compute(records, num_partitions=num_partitions)
        assert run.response.columns == expected
        assert run.response.query_info == query.query_info


def test_local_responder_metrics():
    query = make_query(limit=True, cap=1)
    records = [
        Record("a", True, (1, 1)), Record("a", True, (2, 2)), Record("a", True, (3, 3)),
        Record("b", False, (1, 1)), Record("c", True, (4, 4)),
    ]
    run = LocalResponder(query, ResponderConfig()).compute(records, num_partitions=3)
    m = run.metrics
    assert m.records_received == 5
    assert m.records_filtered == 1
    assert m.records_kept == 2
    assert m.hits_dropped == 2
    assert m.limit_triggers == 1
    assert m.hits_per_selector == {"a": 1, "c": 1}
    assert run.table_source is None


def test_config_overrides_hit_limit():
    query = make_query(limit=False)
    overridden = effective_query(query, ResponderConfig(limit_hits_per_selector=True, max_hits_per_selector=1))
    assert overridden.query_info.limit_hits_per_selector
    assert overridden.query_info.max_hits_per_selector == 1
    assert not query.query_info.limit_hits_per_selector
    assert effective_query(query, ResponderConfig()) is query


def test_persisted_table_reused(tmp_path):
    query = make_query()
    records = make_records()
    config = ResponderConfig(use_persisted_table=True)

    first = LocalResponder(query, config, table_dir=str(tmp_path)).compute(records)
    second = LocalResponder(query, config, table_dir=str(tmp_path)).compute(records)
    assert first.table_source == "computed"
    assert second.table_source == "loaded"
    assert first.response == second.response
    assert first.response.columns == expected_columns(query, records)


def test_persisted_table_needs_directory():
    with pytest.raises(ConfigurationError):
        LocalResponder(make_query(persisted=True), ResponderConfig())


# =============================================================================
# Metrics
# =============================================================================

def test_metrics_merge():
    a = ResponderMetrics(records_received=3, records_kept=2)
    a.add_selector_hits("x", 2)
    b = ResponderMetrics(records_received=4, hits_dropped=1)
    b.add_selector_hits("x")
    b.add_selector_hits("y")

    total = merge_all([a, b])
    assert total.records_received == 7
    assert total.records_kept == 2
    assert total.hits_dropped == 1
    assert total.hits_per_selector == {"x": 3, "y": 1}
    assert merge_all([b, a]).to_dict() == total.to_dict()
    assert merge_all([]).counters()["records_received"] == 0

    with pytest.raises(KeyError):
        a.add("bogus")


# =============================================================================
# Schema and storage boundaries
# =============================================================================

def test_embed_value():
    params = EmbeddingParams(chunk_bit_size=8, chunks_per_element=3)
    assert embed_value(0x010203, params) == (1, 2, 3)
    assert embed_value(5, params) == (0, 0, 5)
    assert embed_value(b"\x0a\x0b", params) == (0, 10, 11)
    assert join_chunks(embed_value(123456, params), params) == 123456
    with pytest.raises(InvalidEmbeddingError):
        embed_value(1 << 24, params)
    with pytest.raises(InvalidEmbeddingError):
        embed_value(-1, params)


def test_query_validation():
    query = make_query(num_rows=3)
    incomplete = Query(query_info=query.query_info, n_squared=N_SQUARED, elements={0: 2, 1: 3})
    with pytest.raises(ConfigurationError):
        incomplete.validate()
    with pytest.raises(ConfigurationError):
        EmbeddingParams(chunk_bit_size=0).validate()


def test_query_store_roundtrip(tmp_path):
    query = make_query(n_squared=(2 ** 127 - 1) ** 2)
    path = str(tmp_path / "nested" / "query.json")
    QueryStore().store(path, query)
    loaded = QueryStore().load(path)
    assert loaded == query
    assert loaded.query_hash() == query.query_hash()

    with pytest.raises(StorageError) as exc:
        QueryStore().load(str(tmp_path / "missing.json"))
    assert exc.value.boundary == "query"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"query_info": {"identifier": "x"}}))
    with pytest.raises(ConfigurationError):
        QueryStore().load(str(bad))


def test_response_store_roundtrip(tmp_path):
    info = make_query(num_columns=3).query_info
    response = Response(query_info=info, columns=((0, 1), (1, 2 ** 200), (2, 3)))
    path = str(tmp_path / "response.json")
    ResponseStore().store(path, response)
    assert ResponseStore().load(path) == response
    assert not os.path.exists(path + ".tmp")

    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(StorageError) as exc:
        ResponseStore().store(str(blocker / "response.json"), response)
    assert exc.value.boundary == "response"


def test_hadoop_uri_needs_spark_context(tmp_path, monkeypatch):
    """Without a SparkContext a Hadoop URI is refused and nothing lands locally."""
    monkeypatch.chdir(tmp_path)
    query = make_query(num_columns=3)
    response = Response(query_info=query.query_info, columns=((0, 1), (1, 2), (2, 3)))

    with pytest.raises(ConfigurationError):
        ResponseStore().store("hdfs://namenode/pir/response.json", response)
    with pytest.raises(ConfigurationError):
        ResponseStore().load("hdfs://namenode/pir/response.json")
    with pytest.raises(ConfigurationError):
        QueryStore().store("s3a://bucket/pir/query.json", query)
    with pytest.raises(ConfigurationError):
        QueryStore().load("hdfs://namenode/pir/query.json")
    assert os.listdir(str(tmp_path)) == []


def test_query_info_boolean_flags():
    info = make_query().query_info.to_dict()

    parsed = QueryInfo.from_dict(dict(info, limit_hits_per_selector="false", use_exp_lookup_table="True"))
    assert parsed.limit_hits_per_selector is False
    assert parsed.use_exp_lookup_table is True
    assert QueryInfo.from_dict(dict(info, limit_hits_per_selector=0)).limit_hits_per_selector is False
    assert QueryInfo.from_dict(dict(info, limit_hits_per_selector=True)).limit_hits_per_selector is True

    for bad in ("maybe", 2, None, [True]):
        with pytest.raises(ConfigurationError):
            QueryInfo.from_dict(dict(info, limit_hits_per_selector=bad))


def test_local_engine_imports_without_spark():
    """The in-process engine, its reader and the pipeline never import pyspark."""
    code = (
        "import sys; sys.path.insert(0, %r); "
        "import core.pipeline, engine.responder, reader.record_reader, writer.response_writer; "
        "print('pyspark' in sys.modules)" % ROOT
    )
    out = subprocess.run([sys.executable, "-c", code], capture_output=True, text=True, check=True)
    assert out.stdout.strip() == "False"


def test_read_records_jsonl(tmp_path):
    params = EmbeddingParams(chunk_bit_size=8, chunks_per_element=2)
    path = tmp_path / "records.json"
    lines = [
        {"email": "a", "chunks": [1, 2]},
        {"email": "b", "keep": False, "chunks": "3 4"},
        {"email": "c", "keep": "no", "value": 258},
        {"email": None, "chunks": [0, 0]},
    ]
    path.write_text("\n".join(json.dumps(line) for line in lines) + "\n\n")

    records = list(read_records_jsonl(str(path), params, {"selector": "email"}))
    assert records == [
        Record("a", True, (1, 2)),
        Record("b", False, (3, 4)),
        Record("c", False, (1, 2)),
    ]

    with pytest.raises(StorageError):
        list(read_records_jsonl(str(tmp_path / "missing.json"), params))


# =============================================================================
# Pipeline and CLI
# =============================================================================

def _write_inputs(tmp_path, query, records):
    query_path = str(tmp_path / "query.json")
    records_path = str(tmp_path / "records.json")
    QueryStore().store(query_path, query)
    with open(records_path, "w") as f:
        for record in records:
            f.write(json.dumps({"selector": record.selector, "keep": record.keep,
                                "chunks": list(record.chunks)}) + "\n")
    return query_path, records_path


def _local_config(tmp_path, query_path, records_path):
    config = Config()
    config.responder.engine = "local"
    config.responder.num_data_partitions = 4
    config.data.input_path = records_path
    config.data.query_path = query_path
    config.data.output_path = str(tmp_path / "out" / "response.json")
    return config


def test_pipeline_local_end_to_end(tmp_path):
    from core.pipeline import ResponderPipeline

    query = make_query()
    records = make_records()
    query_path, records_path = _write_inputs(tmp_path, query, records)
    config = _local_config(tmp_path, query_path, records_path)

    result = ResponderPipeline(config).run()
    assert result.success
    assert result.num_columns == query.query_info.num_columns
    assert result.to_dict()["metrics"]["records_received"] == len(records)

    response = ResponseStore().load(config.data.output_path)
    assert response.columns == expected_columns(query, records)


def test_pipeline_failure_writes_nothing(tmp_path):
    from core.pipeline import ResponderPipeline

    query = make_query(num_columns=2, limit=False)
    records = [Record("a", True, (1, 1)), Record("a", True, (2, 2))]
    query_path, records_path = _write_inputs(tmp_path, query, records)
    config = _local_config(tmp_path, query_path, records_path)

    with pytest.raises(StageError):
        ResponderPipeline(config).run()
    assert not os.path.exists(config.data.output_path)


def test_main_exit_codes(tmp_path):
    import main

    query_path, records_path = _write_inputs(tmp_path, make_query(), make_records())
    config = _local_config(tmp_path, query_path, records_path)
    ini_path = str(tmp_path / "config.ini")
    config.to_ini(ini_path)
    log_dir = str(tmp_path / "logs")

    assert main.main(["--config", ini_path, "--dry-run", "--log-dir", log_dir]) == 0
    assert main.main(["--config", ini_path, "--log-dir", log_dir]) == 0
    assert os.path.exists(config.data.output_path)
    assert main.main(["--config", ini_path, "--query", str(tmp_path / "nope.json"),
                      "--log-dir", log_dir]) == 1
    assert main.main(["--config", str(tmp_path / "missing.ini"), "--log-dir", log_dir]) == 1


def run_all_tests():
    """Run all tests without pytest."""
    print("=" * 60)
    print("PIR Responder - Unit Tests (No Spark)")
    print("=" * 60)
    print()

    sys.exit(pytest.main([__file__, "-q"]))


if __name__ == '__main__':
    run_all_tests()
