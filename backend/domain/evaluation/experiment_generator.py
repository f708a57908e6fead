"""
Candidate experiment generation: embedding models x top_k x thresholds x chunking config
"""

from typing import Any, Dict, List, Optional, Tuple

DEFAULT_EMBEDDING_MODELS: List[Tuple[str, str]] = [
    ("text-embedding-3-small", "2024-01"),
    ("text-embedding-3-large", "2024-01"),
    ("text-embedding-ada-002", "2022-12"),
]
DEFAULT_TOP_K_VALUES = [3, 5, 10, 20]
DEFAULT_SIMILARITY_THRESHOLDS = [0.5, 0.7, 0.8]
DEFAULT_MAX_EXPERIMENTS = 50

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_CHUNK_STRATEGY = "fixed"


def chunking_config_hash(chunk_size: int, chunk_overlap: int, chunk_strategy: str) -> str:
    """
    Short stable hash of a chunking configuration.

    31-multiplier string hash folded to a signed 32-bit int, rendered in hex
    (negative values keep their sign), so hashes match those already stored.
    """
    value = 0
    for char in f"{chunk_size}-{chunk_overlap}-{chunk_strategy}":
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(value, "x")


def experiment_name(
    embedding_model: str,
    top_k: int,
    threshold: float,
    chunking_hash: Optional[str] = None
) -> str:
    model_short = "-".join(embedding_model.split("-")[-2:])
    name = f"{model_short}_k{top_k}_t{round(threshold * 100)}"
    if chunking_hash:
        name += f"_c{chunking_hash[:4]}"
    return name


def project_chunking_config(project: Dict[str, Any]) -> Dict[str, Any]:
    chunk_size = project.get("chunk_size") or DEFAULT_CHUNK_SIZE
    chunk_overlap = project.get("chunk_overlap") or DEFAULT_CHUNK_OVERLAP
    chunk_strategy = project.get("chunk_strategy") or DEFAULT_CHUNK_STRATEGY
    return {
        "hash": chunking_config_hash(chunk_size, chunk_overlap, chunk_strategy),
        "chunk_size": chunk_size,
        "chunk_overlap": chunk_overlap,
        "chunk_strategy": chunk_strategy,
    }


def generate_candidates(
    project: Dict[str, Any],
    embedding_models: Optional[List[str]] = None,
    top_k_values: Optional[List[int]] = None,
    thresholds: Optional[List[float]] = None,
    max_experiments: int = DEFAULT_MAX_EXPERIMENTS,
    include_existing_config: bool = True
) -> List[Dict[str, Any]]:
    """
    Build the grid of candidate experiment specs, capped at `max_experiments`.

    Overridden model lists carry the version "latest". Specs are plain dicts
    ready for the store; deduplication against existing names is the caller's job.
    """
    models = [(m, "latest") for m in embedding_models] if embedding_models else DEFAULT_EMBEDDING_MODELS
    top_ks = top_k_values or DEFAULT_TOP_K_VALUES
    sim_thresholds = thresholds or DEFAULT_SIMILARITY_THRESHOLDS
    chunking_configs = [project_chunking_config(project)] if include_existing_config else [None]

    candidates = []
    for model, version in models:
        for top_k in top_ks:
            for threshold in sim_thresholds:
                for chunking in chunking_configs:
                    if len(candidates) >= max_experiments:
                        return candidates
                    chunking_hash = chunking["hash"] if chunking else None
                    candidates.append({
                        "name": experiment_name(model, top_k, threshold, chunking_hash),
                        "description": f"Auto-generated: {model} with top_k={top_k}, threshold={threshold}",
                        "chunking_config_hash": chunking_hash,
                        "embedding_model": model,
                        "embedding_model_version": version,
                        "retrieval_config": {
                            "top_k": top_k,
                            "similarity_threshold": threshold,
                            "filters": {},
                        },
                    })
    return candidates
