"""VSA engine boundary.

Treatments only talk to a `VsaEngine`: encode bytes to vectors, bundle/bind,
cosine similarity, ingest files into a codebook, extract a codebook back to
files, and query either a flat codebook index or a hierarchical one.
`SparseTernaryEngine` is the in-repo reference implementation over
SparseTernaryVector; other engines plug in by subclassing VsaEngine and
registering in ENGINES.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from vsa_bench.common import CHUNK_SIZE, DEFAULT_DIMENSION
from vsa_bench.prep.vectors import SparseTernaryVector, check_generate_params, generate_sparse_vector

log = logging.getLogger(__name__)

# Nonzeros kept per directory-level bundle in a hierarchy
MAX_LEVEL_SPARSITY = 500


@dataclass
class Codebook:
    """Chunk id -> vector, in ingest order, plus what was ingested.

    `manifest` maps each logical file path to its chunk ids in file order;
    `chunks` holds the raw bytes of every chunk so the codebook can be
    extracted back to files.
    """

    vectors: dict[int, SparseTernaryVector] = field(default_factory=dict)
    raw_bytes: int = 0
    files: list[str] = field(default_factory=list)
    manifest: dict[str, list[int]] = field(default_factory=dict)
    chunks: dict[int, bytes] = field(default_factory=dict)

    def __len__(self):
        return len(self.vectors)

    def items(self) -> list[tuple[int, SparseTernaryVector]]:
        return sorted(self.vectors.items(), key=lambda kv: kv[0])


@dataclass(frozen=True)
class HierarchicalQueryBounds:
    """Work limits for a hierarchical beam query.

    beam_width directory nodes survive each level; max_depth levels are
    descended below the root; max_expansions children are scored in total;
    max_open_nodes directories and max_open_leaves files are opened at most.
    """

    k: int = 10
    candidate_k: int = 100
    beam_width: int = 10
    max_depth: int = 3
    max_expansions: int = 1000
    max_open_nodes: int = 100
    max_open_leaves: int = 50

    def __post_init__(self):
        for name, value in vars(self).items():
            if value < 1:
                raise ValueError(f"{name} must be positive (got {value})")


class VsaEngine(ABC):
    """Operations the benchmarks time; implementations are opaque to the harness."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def encode_data(self, data: bytes, path: str | None = None) -> SparseTernaryVector: ...

    @abstractmethod
    def bundle(self, a: SparseTernaryVector, b: SparseTernaryVector) -> SparseTernaryVector: ...

    @abstractmethod
    def bind(self, a: SparseTernaryVector, b: SparseTernaryVector) -> SparseTernaryVector: ...

    @abstractmethod
    def cosine(self, a: SparseTernaryVector, b: SparseTernaryVector) -> float: ...

    @abstractmethod
    def ingest(self, paths, chunk_size: int = CHUNK_SIZE, prefix: str | None = None) -> Codebook: ...

    @abstractmethod
    def extract(self, codebook: Codebook, out_dir) -> list[Path]:
        """Write every file of the codebook under out_dir at its logical path."""

    @abstractmethod
    def build_index(self, codebook: Codebook): ...

    @abstractmethod
    def build_hierarchy(self, codebook: Codebook): ...

    def ingest_directory(self, root, chunk_size: int = CHUNK_SIZE, prefix: str | None = None) -> Codebook:
        return self.ingest([root], chunk_size=chunk_size, prefix=prefix)

    def params_dict(self) -> dict:
        return {"engine": self.name}


def collect_files(root: Path) -> list[Path]:
    if root.is_file():
        return [root]
    return sorted(p for p in root.rglob("*") if p.is_file())


def logical_path(root: Path, file: Path, prefix: str | None = None) -> str:
    """`{prefix}/{path relative to root}`; prefix defaults to the input's own name."""
    rel = file.name if root.is_file() else file.relative_to(root).as_posix()
    return f"{prefix or root.name}/{rel}".rstrip("/")


def _dot(a: SparseTernaryVector, b: SparseTernaryVector) -> int:
    same = len(np.intersect1d(a.pos, b.pos, assume_unique=True)) + len(np.intersect1d(a.neg, b.neg, assume_unique=True))
    diff = len(np.intersect1d(a.pos, b.neg, assume_unique=True)) + len(np.intersect1d(a.neg, b.pos, assume_unique=True))
    return same - diff


def _cosine(a: SparseTernaryVector, b: SparseTernaryVector) -> float:
    if a.nnz == 0 or b.nnz == 0:
        return 0.0
    return _dot(a, b) / float(np.sqrt(a.nnz * b.nnz))


def bundle_many(vectors, max_nnz: int | None = None) -> SparseTernaryVector:
    """Sign of the sum of `vectors`, keeping the `max_nnz` largest-magnitude coordinates."""
    pos = np.concatenate([np.empty(0, dtype=np.uint32)] + [v.pos for v in vectors]).astype(np.int64)
    neg = np.concatenate([np.empty(0, dtype=np.uint32)] + [v.neg for v in vectors]).astype(np.int64)
    coords, inverse = np.unique(np.concatenate((pos, neg)), return_inverse=True)
    weights = np.concatenate((np.ones(len(pos)), -np.ones(len(neg))))
    sums = np.bincount(inverse, weights=weights, minlength=len(coords))

    nonzero = sums != 0
    coords, sums = coords[nonzero], sums[nonzero]
    if max_nnz is not None and len(coords) > max_nnz:
        keep = np.sort(np.argsort(-np.abs(sums), kind="stable")[:max_nnz])
        coords, sums = coords[keep], sums[keep]
    return SparseTernaryVector(coords[sums > 0], coords[sums < 0])


class CodebookIndex:
    """Inverted index from coordinate to the codebook rows that use it.

    Candidates for a query are the rows sharing at least one nonzero
    coordinate, ranked by ternary dot product; `query()` reranks the best
    `candidate_k` of them by cosine.
    """

    def __init__(self, codebook: Codebook) -> None:
        items = codebook.items()
        self.ids = np.array([cid for cid, _ in items], dtype=np.int64)
        self.nnz = np.array([vec.nnz for _, vec in items], dtype=np.float64)

        coords, rows, signs = [], [], []
        for row, (_, vec) in enumerate(items):
            coords.extend((vec.pos.astype(np.int64), vec.neg.astype(np.int64)))
            rows.extend((np.full(len(vec.pos), row), np.full(len(vec.neg), row)))
            signs.extend((np.ones(len(vec.pos)), -np.ones(len(vec.neg))))

        if coords:
            all_coords = np.concatenate(coords)
            order = np.argsort(all_coords, kind="stable")
            self._coords = all_coords[order]
            self._rows = np.concatenate(rows).astype(np.int64)[order]
            self._signs = np.concatenate(signs)[order]
        else:
            self._coords = np.empty(0, dtype=np.int64)
            self._rows = np.empty(0, dtype=np.int64)
            self._signs = np.empty(0)

    def __len__(self):
        return len(self.ids)

    def _scores(self, query: SparseTernaryVector) -> tuple[np.ndarray, np.ndarray]:
        """Dot products against every row, and the rows that were touched."""
        q_coords = np.concatenate((query.pos, query.neg)).astype(np.int64)
        q_signs = np.concatenate((np.ones(len(query.pos)), -np.ones(len(query.neg))))
        lo = np.searchsorted(self._coords, q_coords, side="left")
        hi = np.searchsorted(self._coords, q_coords, side="right")
        counts = hi - lo
        if counts.sum() == 0:
            return np.zeros(len(self.ids)), np.empty(0, dtype=np.int64)

        postings = np.concatenate([np.arange(a, b) for a, b in zip(lo, hi, strict=True) if b > a])
        rows = self._rows[postings]
        weights = self._signs[postings] * np.repeat(q_signs, counts)
        scores = np.bincount(rows, weights=weights, minlength=len(self.ids))
        return scores, np.unique(rows)

    def top_k(self, query: SparseTernaryVector, k: int) -> list[tuple[int, float]]:
        """Best k (id, dot) pairs among rows overlapping the query."""
        scores, touched = self._scores(query)
        order = touched[np.argsort(-scores[touched], kind="stable")][:k]
        return [(int(self.ids[r]), float(scores[r])) for r in order]

    def query(self, query: SparseTernaryVector, candidate_k: int, k: int) -> list[tuple[int, float]]:
        """Approximate top-k: `candidate_k` dot-product candidates reranked by cosine."""
        scores, touched = self._scores(query)
        candidates = touched[np.argsort(-scores[touched], kind="stable")][:candidate_k]
        if len(candidates) == 0 or query.nnz == 0:
            return []
        cos = scores[candidates] / np.sqrt(self.nnz[candidates] * query.nnz)
        reranked = candidates[np.argsort(-cos, kind="stable")][:k]
        return [(int(self.ids[r]), float(scores[r] / np.sqrt(self.nnz[r] * query.nnz))) for r in reranked]


@dataclass
class HierarchyNode:
    path: str
    vector: SparseTernaryVector
    children: list["HierarchyNode"] = field(default_factory=list)
    chunk_ids: list[int] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children


class HierarchicalIndex:
    """Directory tree of bundled vectors over a codebook.

    A file is a leaf whose vector bundles its chunks; a directory bundles its
    children. `query_hierarchical()` descends from the root keeping the best
    `beam_width` directories per level, collects the chunks of the
    best-scoring files, and reranks those chunks by cosine.
    """

    def __init__(self, codebook: Codebook, max_level_sparsity: int = MAX_LEVEL_SPARSITY) -> None:
        self._vectors = codebook.vectors
        self.max_level_sparsity = max_level_sparsity

        tree: dict = {}
        for path, ids in codebook.manifest.items():
            *dirs, leaf = path.split("/")
            node = tree
            for part in dirs:
                node = node.setdefault(part, {})
                if not isinstance(node, dict):
                    raise ValueError(f"{path}: a parent path is also a file")
            node[leaf] = ids
        self.root = self._build("", tree)

    def _build(self, path: str, subtree: dict) -> HierarchyNode:
        children = []
        for name in sorted(subtree):
            child_path = f"{path}/{name}" if path else name
            entry = subtree[name]
            if isinstance(entry, dict):
                children.append(self._build(child_path, entry))
            else:
                vector = bundle_many([self._vectors[cid] for cid in entry], self.max_level_sparsity)
                children.append(HierarchyNode(child_path, vector, chunk_ids=list(entry)))
        vector = bundle_many([child.vector for child in children], self.max_level_sparsity)
        return HierarchyNode(path, vector, children=children)

    def __len__(self):
        return len(self._vectors)

    def query_hierarchical(self, query: SparseTernaryVector, bounds: HierarchicalQueryBounds) -> list[tuple[int, float]]:
        """Approximate top-k (id, cosine) pairs within the work limits of `bounds`."""
        if query.nnz == 0:
            return []

        frontier = [self.root]
        leaves: list[tuple[float, HierarchyNode]] = []
        expansions = opened = 0
        for _ in range(bounds.max_depth):
            scored = []
            for node in frontier:
                if opened >= bounds.max_open_nodes or expansions >= bounds.max_expansions:
                    break
                opened += 1
                for child in node.children:
                    if expansions >= bounds.max_expansions:
                        break
                    expansions += 1
                    scored.append((_cosine(query, child.vector), child))

            scored.sort(key=lambda sc: -sc[0])
            leaves.extend(sc for sc in scored if sc[1].is_leaf)
            frontier = [child for _, child in scored if not child.is_leaf][: bounds.beam_width]
            if not frontier:
                break

        leaves.sort(key=lambda sc: -sc[0])
        candidates = [cid for _, leaf in leaves[: bounds.max_open_leaves] for cid in leaf.chunk_ids]
        reranked = [(cid, _cosine(query, self._vectors[cid])) for cid in candidates[: bounds.candidate_k]]
        reranked.sort(key=lambda r: (-r[1], r[0]))
        return reranked[: bounds.k]


class SparseTernaryEngine(VsaEngine):
    """Reference engine: content-hashed sparse ternary vectors, set-based ops."""

    def __init__(self, dimension: int = DEFAULT_DIMENSION, sparsity: int | None = None) -> None:
        self.dimension = dimension
        self.sparsity = dimension // 100 if sparsity is None else sparsity
        check_generate_params(self.dimension, self.sparsity)

    @property
    def name(self) -> str:
        return "sparse-ternary"

    def params_dict(self) -> dict:
        return {"engine": self.name, "dim": self.dimension, "sparsity": self.sparsity}

    def encode_data(self, data: bytes, path: str | None = None) -> SparseTernaryVector:
        digest = hashlib.sha256((path or "").encode("utf-8") + b"\0" + data).digest()
        seed = int.from_bytes(digest[:8], "little")
        return generate_sparse_vector(seed, 0, self.dimension, self.sparsity)

    def bundle(self, a, b):
        """Sign of a + b: agreeing or one-sided coordinates survive, conflicts cancel."""
        neg_any = np.union1d(a.neg, b.neg)
        pos_any = np.union1d(a.pos, b.pos)
        return SparseTernaryVector(np.setdiff1d(pos_any, neg_any), np.setdiff1d(neg_any, pos_any))

    def bind(self, a, b):
        """Elementwise product: nonzero where both are nonzero."""
        pos = np.union1d(np.intersect1d(a.pos, b.pos), np.intersect1d(a.neg, b.neg))
        neg = np.union1d(np.intersect1d(a.pos, b.neg), np.intersect1d(a.neg, b.pos))
        return SparseTernaryVector(pos, neg)

    def cosine(self, a, b) -> float:
        return _cosine(a, b)

    def ingest(self, paths, chunk_size: int = CHUNK_SIZE, prefix: str | None = None) -> Codebook:
        """Chunk every file under `paths` and encode each chunk.

        Chunk ids are assigned in sorted file order so the codebook is
        reproducible for the same tree. Files land at `logical_path()`; two
        inputs mapping to the same logical path are rejected.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive (got {chunk_size})")
        codebook = Codebook()
        next_id = 0
        for root in map(Path, paths):
            if not root.exists():
                raise FileNotFoundError(f"Input not found: {root}")
            for f in collect_files(root):
                logical = logical_path(root, f, prefix)
                if logical in codebook.manifest:
                    raise ValueError(f"Duplicate logical path: {logical}")
                data = f.read_bytes()
                codebook.raw_bytes += len(data)
                codebook.files.append(logical)
                ids = codebook.manifest[logical] = []
                for offset in range(0, len(data), chunk_size):
                    chunk = data[offset : offset + chunk_size]
                    codebook.vectors[next_id] = self.encode_data(chunk, path=f"{logical}@{offset}")
                    codebook.chunks[next_id] = chunk
                    ids.append(next_id)
                    next_id += 1
        log.debug("Ingested %d file(s), %d chunk(s), %d bytes", len(codebook.files), len(codebook), codebook.raw_bytes)
        return codebook

    def extract(self, codebook: Codebook, out_dir) -> list[Path]:
        """Reassemble each file from its stored chunks, in manifest order."""
        out_dir = Path(out_dir)
        written = []
        for logical, ids in codebook.manifest.items():
            target = out_dir / logical
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(b"".join(codebook.chunks[cid] for cid in ids))
            written.append(target)
        return written

    def build_index(self, codebook: Codebook) -> CodebookIndex:
        return CodebookIndex(codebook)

    def build_hierarchy(self, codebook: Codebook, max_level_sparsity: int = MAX_LEVEL_SPARSITY) -> HierarchicalIndex:
        return HierarchicalIndex(codebook, max_level_sparsity=max_level_sparsity)


ENGINES = {
    "sparse-ternary": SparseTernaryEngine,
}


def get_engine(name: str, **kwargs) -> VsaEngine:
    if name not in ENGINES:
        raise ValueError(f"Unknown engine: {name} (choose from {', '.join(ENGINES)})")
    return ENGINES[name](**kwargs)
