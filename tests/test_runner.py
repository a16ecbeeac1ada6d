from pathlib import Path

from PIL import Image

from batchpipe.cli.runner import convert_images, make_download_config, make_image_config
from batchpipe.core.config import BatchpipeConfig
from batchpipe.core.safe_http import SafeHttpClient


def test_base_config_is_not_mutated(tmp_path: Path):
    base = BatchpipeConfig()
    base.images.quality = 55
    base.source.local.include_exts = (".png",)

    cfg = make_image_config(tmp_path / "in", tmp_path / "out", base_config=base, include_exts=[".jpg"])
    cfg.images.quality = 90
    cfg.pipeline.batch_size = 3
    cfg.http.build_client()

    assert base.images.quality == 55
    assert base.pipeline.batch_size == 50
    assert base.source.local.include_exts == (".png",)
    assert base.http.client is None
    assert cfg.images is not base.images


def test_prebuilt_http_client_is_shared(tmp_path: Path):
    client = SafeHttpClient(timeout=5)
    base = BatchpipeConfig()
    base.http.client = client

    cfg = make_download_config(["https://x.example/a.mp3"], tmp_path / "out", base_config=base)

    assert cfg.http is not base.http
    assert cfg.http.client is client
    assert cfg.http.build_client() is client


def test_convert_images_creates_output_and_keeps_base(tmp_path: Path):
    src = tmp_path / "in"
    src.mkdir()
    Image.new("RGB", (4, 4), (10, 200, 10)).save(src / "a.png", format="PNG")
    base = BatchpipeConfig()
    base.images.format = "png"
    out = tmp_path / "deep" / "out"

    stats = convert_images(src, out, base_config=base, batch_size=1, inter_batch_pause=0)

    assert stats.processed == 1
    assert (out / "a.png").is_file()
    assert base.pipeline.batch_size == 50
    assert base.pipeline.inter_batch_pause == 0.05
