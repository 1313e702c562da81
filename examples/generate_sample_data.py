#!/usr/bin/env python3
"""
Generate Sample Query and Records
=================================
Creates a toy query and a JSON-lines record file for trying the responder
without a querier.

The query elements are random units modulo N^2 for a tiny N; they have the
shape of ciphertexts but encrypt nothing in particular. Never use them for
anything but demos and tests.

Usage:
    python examples/generate_sample_data.py

    # Or with custom parameters:
    python examples/generate_sample_data.py --num-records 10000 --output-dir data/
"""

import argparse
import json
import math
import os
import random
import sys
from typing import Dict, List, Tuple

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from schema.query import EmbeddingParams, Query, QueryInfo, QueryStore
from schema.record import embed_value


# Small primes for the toy modulus (N = p * q)
TOY_PRIMES = (1009, 1013, 1019, 1021, 1031, 1033, 1039, 1049)


def random_unit(n: int, n_squared: int, rng: random.Random) -> int:
    """Random element of Z*_{N^2}."""
    while True:
        value = rng.randrange(2, n_squared)
        if math.gcd(value, n) == 1:
            return value


def generate_query(
    num_rows: int = 64,
    num_columns: int = 256,
    embedding: EmbeddingParams = EmbeddingParams(chunk_bit_size=8, chunks_per_element=2),
    max_hits_per_selector: int = 4,
    seed: int = 42
) -> Query:
    """Build a toy query with one random element per row."""
    rng = random.Random(seed)
    p, q = rng.sample(TOY_PRIMES, 2)
    n = p * q
    n_squared = n * n

    info = QueryInfo(
        identifier=f"toy-{seed}",
        query_type="toy",
        num_rows=num_rows,
        num_columns=num_columns,
        hash_key=f"key-{seed}",
        limit_hits_per_selector=True,
        max_hits_per_selector=max_hits_per_selector,
    )
    elements = {i: random_unit(n, n_squared, rng) for i in range(num_rows)}
    query = Query(query_info=info, n_squared=n_squared, elements=elements, embedding=embedding)
    query.validate()
    return query


def generate_records(
    num_records: int,
    num_selectors: int,
    embedding: EmbeddingParams,
    seed: int = 42
) -> List[Dict[str, object]]:
    """Records with random selectors, values and a few filtered out."""
    rng = random.Random(seed)
    max_value = (1 << (embedding.chunk_bit_size * embedding.chunks_per_element)) - 1
    records = []
    for _ in range(num_records):
        value = rng.randint(0, max_value)
        records.append({
            "selector": f"sel-{rng.randrange(num_selectors):05d}",
            "keep": rng.random() > 0.05,
            "chunks": list(embed_value(value, embedding)),
        })
    return records


def write_sample_data(output_dir: str, num_records: int = 1000, num_selectors: int = 200,
                      seed: int = 42) -> Tuple[str, str]:
    """Write query.json and records.json; returns (query_path, records_path)."""
    os.makedirs(output_dir, exist_ok=True)
    embedding = EmbeddingParams(chunk_bit_size=8, chunks_per_element=2)
    query = generate_query(embedding=embedding, seed=seed)
    records = generate_records(num_records, num_selectors, embedding, seed)

    query_path = os.path.join(output_dir, "query.json")
    records_path = os.path.join(output_dir, "records.json")
    QueryStore().store(query_path, query)
    with open(records_path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
    return query_path, records_path


def main():
    parser = argparse.ArgumentParser(
        description="Generate a toy PIR query and sample records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--output-dir", type=str, default="data", help="Output directory (default: data/)")
    parser.add_argument("--num-records", type=int, default=1000, help="Number of records (default: 1000)")
    parser.add_argument("--num-selectors", type=int, default=200, help="Distinct selectors (default: 200)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    query_path, records_path = write_sample_data(
        args.output_dir, args.num_records, args.num_selectors, args.seed
    )
    print(f"Query:    {query_path}")
    print(f"Records:  {records_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
