"""Tests for terrain-RGB elevation profiles."""

import io

import httpx
import numpy as np
import pytest
import respx
from PIL import Image

from app.models import InvalidInputError, UpstreamExhaustedError
from app.services.elevation import (
    ElevationService,
    MapboxTerrainProvider,
    ascent_descent,
    decode_terrain_tile,
    sample_path,
)
from app.services.elevation.service import TERRAIN_URL


def terrain_png(elevations: np.ndarray) -> bytes:
    """Encode a grid of elevations (meters) as a terrain-RGB PNG."""
    value = np.rint((elevations + 10000.0) * 10).astype(np.int64)
    rgb = np.stack([(value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF], axis=-1)
    buffer = io.BytesIO()
    Image.fromarray(rgb.astype(np.uint8), "RGB").save(buffer, format="PNG")
    return buffer.getvalue()


def column_gradient_tile() -> bytes:
    """256x256 tile whose elevation is 1000 m plus the pixel column."""
    columns = np.arange(256, dtype=np.float64)
    return terrain_png(np.tile(1000.0 + columns, (256, 1)))


class TestDecodeTerrainTile:
    """Tests for terrain-RGB decoding."""

    def test_uniform_tile(self) -> None:
        grid = decode_terrain_tile(terrain_png(np.full((4, 4), 1000.0)))
        assert grid.shape == (4, 4)
        assert np.allclose(grid, 1000.0)

    def test_sea_level_and_below(self) -> None:
        grid = decode_terrain_tile(terrain_png(np.array([[0.0, -12.5]])))
        assert grid[0, 0] == pytest.approx(0.0)
        assert grid[0, 1] == pytest.approx(-12.5)


class TestSamplePath:
    """Tests for distance-based path sampling."""

    def test_keeps_first_last_and_every_interval(self) -> None:
        # ~11.1 m between points along the equator
        coords = [[i * 0.0001, 0.0] for i in range(11)]
        sampled = sample_path(coords, 30.0)
        assert sampled == [coords[0], coords[3], coords[6], coords[9], coords[10]]

    def test_last_point_not_duplicated(self) -> None:
        coords = [[0.0, 0.0], [0.001, 0.0]]
        assert sample_path(coords, 50.0) == coords


class TestAscentDescent:
    """Tests for cumulative climb and drop."""

    def test_mixed_profile(self) -> None:
        assert ascent_descent([100.0, 150.0, 120.0, 200.0]) == (130.0, 30.0)

    def test_single_sample(self) -> None:
        assert ascent_descent([100.0]) == (0.0, 0.0)


class TestElevationService:
    """Tests for the elevation profile operation."""

    def setup_method(self) -> None:
        self.tile_url = f"{TERRAIN_URL}/0/0/0.pngraw"

    @pytest.fixture
    def service(self, limiter, caches) -> ElevationService:
        return ElevationService(MapboxTerrainProvider("mapbox-token"), limiter, caches)

    @pytest.mark.asyncio
    @respx.mock
    async def test_profile_reuses_tiles_and_caches(self, service) -> None:
        route = respx.get(self.tile_url).mock(
            return_value=httpx.Response(200, content=column_gradient_tile())
        )
        # At zoom 0 longitude 0 maps to column 128 and longitude 90 to column 192
        path = [[0.0, 0.0], [90.0, 0.0], [0.0, 0.0]]

        result = await service.profile("user-1", path, zoom=0)
        again = await service.profile("user-1", path, zoom=0)

        assert route.call_count == 1
        assert again == result
        assert route.calls.last.request.url.params["access_token"] == "mapbox-token"
        assert [p["elevation"] for p in result["elevations"]] == pytest.approx([1128.0, 1192.0, 1128.0])
        assert result["elevations"][0]["distance"] == 0.0
        assert result["elevations"][1]["distance"] == pytest.approx(10_007_543, rel=1e-3)
        assert result["ascent"] == pytest.approx(64.0)
        assert result["descent"] == pytest.approx(64.0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_antimeridian_uses_last_column(self, service) -> None:
        route = respx.get(self.tile_url).mock(
            return_value=httpx.Response(200, content=column_gradient_tile())
        )
        result = await service.profile("user-1", [[180.0, 0.0], [179.99, 0.0]], zoom=0)
        assert route.call_count == 1
        assert {p["elevation"] for p in result["elevations"]} == {1255.0}

    @pytest.mark.asyncio
    @respx.mock
    async def test_tile_failure(self, service) -> None:
        respx.get(self.tile_url).mock(return_value=httpx.Response(404))
        with pytest.raises(UpstreamExhaustedError):
            await service.profile("user-1", [[0.0, 0.0], [90.0, 0.0]], zoom=0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_undecodable_tile(self, service) -> None:
        respx.get(self.tile_url).mock(return_value=httpx.Response(200, content=b"not a png"))
        with pytest.raises(UpstreamExhaustedError):
            await service.profile("user-1", [[0.0, 0.0], [90.0, 0.0]], zoom=0)

    @pytest.mark.asyncio
    async def test_not_configured(self, limiter, caches) -> None:
        service = ElevationService(None, limiter, caches)
        with pytest.raises(UpstreamExhaustedError):
            await service.profile("user-1", [[0.0, 0.0], [1.0, 1.0]])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "coordinates,zoom,every",
        [
            ([[18.8, 68.3]], 15, 50),
            ([[18.8, 68.3], [18.9, 95.0]], 15, 50),
            ([[18.8, 68.3], [18.9, 68.4]], 16, 50),
            ([[18.8, 68.3], [18.9, 68.4]], 15, 0),
        ],
    )
    async def test_invalid_input(self, service, coordinates, zoom, every) -> None:
        with pytest.raises(InvalidInputError):
            await service.profile("user-1", coordinates, zoom=zoom, sample_every_meters=every)
