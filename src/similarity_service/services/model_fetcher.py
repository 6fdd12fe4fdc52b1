"""
Download of model repository files with byte-level progress reporting.

transformers' from_pretrained() hides per-file progress, so the files a
dual-encoder needs are streamed here into a local directory first and the
artifacts are then built from that directory.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx
from huggingface_hub import HfApi, hf_hub_url

from similarity_service.core.exceptions import ModelLoadError
from similarity_service.logging import get_logger

# Files needed by the tokenizer, the image preprocessor and the model config.
# Listed in resolution order: tokenizer, preprocessor, then the encoders.
TOKENIZER_FILES: tuple[str, ...] = (
    "tokenizer.json",
    "tokenizer_config.json",
    "vocab.json",
    "merges.txt",
    "special_tokens_map.json",
    "added_tokens.json",
)
PREPROCESSOR_FILES: tuple[str, ...] = ("preprocessor_config.json",)
MODEL_CONFIG_FILES: tuple[str, ...] = ("config.json",)

DOWNLOAD_CHUNK_BYTES = 1024 * 1024

# transformers checkpoints: single file or model-00001-of-00002 style shards
_SAFETENSORS_WEIGHTS = re.compile(r"model(-\d{5}-of-\d{5})?\.safetensors")
_BIN_WEIGHTS = re.compile(r"pytorch_model(-\d{5}-of-\d{5})?\.bin")


@dataclass(frozen=True)
class ProgressEvent:
    """
    One observation of a file being downloaded or loaded.

    Attributes:
        file: Repository-relative file name
        name: Model source identifier the file belongs to
        loaded: Bytes available so far
        total: Expected size in bytes (0 when unknown)
    """

    file: str
    name: str
    loaded: int
    total: int

    @property
    def progress(self) -> float:
        """Percent complete in [0, 100]; 0 when the total is unknown."""
        if self.total <= 0:
            return 0.0
        return min(100.0, self.loaded / self.total * 100)


ProgressSink = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class RepoFile:
    """A file in the model repository and its size (None if not reported)."""

    name: str
    size: int | None


@dataclass(frozen=True)
class RepoListing:
    """Files of the commit a revision resolved to."""

    commit: str
    files: list[RepoFile]


def select_files(files: list[RepoFile]) -> list[RepoFile]:
    """
    Pick the files needed to build tokenizer, preprocessor and both encoders.

    Only top-level transformers checkpoints are considered: model.safetensors
    or its shards, else pytorch_model.bin or its shards. Other weight files
    (open_clip exports, ONNX, TF, Flax) are never selected.

    Raises:
        ModelLoadError: If the repository has no usable weights
    """
    top_level = {f.name: f for f in files if "/" not in f.name}

    safetensors = sorted(n for n in top_level if _SAFETENSORS_WEIGHTS.fullmatch(n))
    if safetensors:
        weights = [*safetensors, "model.safetensors.index.json"]
    else:
        weights = sorted(n for n in top_level if _BIN_WEIGHTS.fullmatch(n))
        weights.append("pytorch_model.bin.index.json")

    wanted = [*TOKENIZER_FILES, *PREPROCESSOR_FILES, *MODEL_CONFIG_FILES, *weights]
    selected = [top_level[name] for name in wanted if name in top_level]

    if not any(f.name.endswith((".safetensors", ".bin")) for f in selected):
        raise ModelLoadError(
            "Model repository contains no PyTorch weights",
            details={"files": sorted(top_level)},
        )
    return selected


class ModelFetcher:
    """
    Streams model repository files into a local snapshot directory.

    Snapshots are keyed on the commit the revision resolved to, so moving a
    branch never mixes files of two commits. refs/<revision> remembers the
    last complete snapshot for use when the hub cannot be reached. Files
    already present with the expected size are not downloaded again; they
    still produce one completed progress event each.
    """

    def __init__(
        self,
        cache_dir: Path,
        revision: str,
        token: str | None,
        timeout: float,
    ) -> None:
        self.cache_dir = cache_dir
        self.revision = revision
        self.token = token
        self.timeout = timeout

    def repo_dir(self, source_id: str) -> Path:
        return self.cache_dir / source_id.replace("/", "--")

    def snapshot_dir(self, source_id: str, commit: str) -> Path:
        """Local directory holding the files of one model commit."""
        return self.repo_dir(source_id) / commit

    def ref_file(self, source_id: str) -> Path:
        return self.repo_dir(source_id) / "refs" / self.revision

    def list_files(self, source_id: str) -> RepoListing:
        """Resolve the revision to a commit and list its files with sizes."""
        api = HfApi(token=self.token)
        try:
            info = api.model_info(source_id, revision=self.revision, files_metadata=True)
        except Exception as e:
            raise ModelLoadError(
                f"Failed to resolve model '{source_id}': {e}",
                details={"model": source_id, "revision": self.revision},
            ) from e

        siblings = info.siblings or []
        return RepoListing(
            commit=info.sha or self.revision,
            files=[RepoFile(name=s.rfilename, size=s.size) for s in siblings],
        )

    def local_listing(self, source_id: str) -> RepoListing | None:
        """The last complete snapshot of the revision, if one was recorded."""
        ref = self.ref_file(source_id)
        if not ref.is_file():
            return None
        commit = ref.read_text().strip()
        target_dir = self.snapshot_dir(source_id, commit)
        if not commit or not target_dir.is_dir():
            return None
        files = [
            RepoFile(name=path.name, size=path.stat().st_size)
            for path in sorted(target_dir.iterdir())
            if path.is_file() and not path.name.endswith(".incomplete")
        ]
        return RepoListing(commit=commit, files=files) if files else None

    def fetch(
        self,
        source_id: str,
        progress_sink: ProgressSink | None,
    ) -> Path:
        """
        Make every needed file of the model available locally.

        Args:
            source_id: HuggingFace repository id
            progress_sink: Receives a ProgressEvent per received chunk

        Returns:
            Directory containing the files, ready for from_pretrained()

        Raises:
            ModelLoadError: If listing or any download fails
        """
        logger = get_logger()
        try:
            listing = self.list_files(source_id)
        except ModelLoadError:
            local = self.local_listing(source_id)
            if local is None:
                raise
            listing = local
            logger.warning(
                "Model listing failed, using local snapshot",
                extra={"model": source_id, "commit": listing.commit},
            )

        files = select_files(listing.files)
        target_dir = self.snapshot_dir(source_id, listing.commit)
        target_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Fetching model files",
            extra={
                "model": source_id,
                "commit": listing.commit,
                "files": [f.name for f in files],
                "target": str(target_dir),
            },
        )

        headers = {"User-Agent": "similarity-service"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        with httpx.Client(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers=headers,
        ) as client:
            for repo_file in files:
                self._fetch_file(client, source_id, listing.commit, repo_file, target_dir, progress_sink)

        ref = self.ref_file(source_id)
        ref.parent.mkdir(parents=True, exist_ok=True)
        ref.write_text(listing.commit)
        return target_dir

    def _fetch_file(
        self,
        client: httpx.Client,
        source_id: str,
        commit: str,
        repo_file: RepoFile,
        target_dir: Path,
        progress_sink: ProgressSink | None,
    ) -> None:
        def emit(loaded: int, total: int) -> None:
            if progress_sink is not None:
                progress_sink(ProgressEvent(file=repo_file.name, name=source_id, loaded=loaded, total=total))

        target = target_dir / repo_file.name
        if target.exists() and (repo_file.size is None or target.stat().st_size == repo_file.size):
            size = target.stat().st_size
            emit(size, size)
            return

        url = hf_hub_url(source_id, repo_file.name, revision=commit)
        partial = target.with_name(target.name + ".incomplete")

        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                total = _expected_size(response, repo_file)
                loaded = 0
                emit(loaded, total)
                with partial.open("wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_BYTES):
                        f.write(chunk)
                        loaded += len(chunk)
                        emit(loaded, max(total, loaded) if total else 0)
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            raise ModelLoadError(
                f"Failed to download '{repo_file.name}' of '{source_id}': {e}",
                details={"model": source_id, "file": repo_file.name},
            ) from e

        partial.replace(target)


def _expected_size(response: httpx.Response, repo_file: RepoFile) -> int:
    if repo_file.size is not None:
        return repo_file.size
    header = response.headers.get("Content-Length")
    if header is None:
        return 0
    try:
        return int(header)
    except ValueError:
        return 0
