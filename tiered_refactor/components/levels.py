"""Per-level plane components: EncodedLevels, CompressedLevels, RetrievedLevels."""

from pydantic import BaseModel, Field, model_validator


class Component(BaseModel):
    """Base class for all ECS components."""

    model_config = {"arbitrary_types_allowed": True}


class LevelLayout(Component):
    """Geometry and scaling shared by every per-level component.

    Attributes:
        shape: Shape of the original field
        coeff_shape: Shape of the coefficient array
        level_shapes: Nested boxes, coarsest first
        level_error_bounds: Largest coefficient magnitude per level
        num_planes: Planes per level
    """

    shape: tuple[int, ...]
    coeff_shape: tuple[int, ...]
    level_shapes: list[tuple[int, ...]]
    level_error_bounds: list[float]
    num_planes: int = Field(ge=1, le=60)

    @property
    def num_levels(self) -> int:
        return len(self.level_shapes)

    @property
    def target_level(self) -> int:
        return len(self.level_shapes) - 1


class EncodedLevels(LevelLayout):
    """Bitplanes of every level, as produced by the encoder.

    ``planes[i]`` may hold fewer than ``num_planes`` entries when rebuilt from
    a partial retrieval; decoding uses whatever prefix is present.

    Attributes:
        planes: Per-level plane bytes, most significant first
        sizes: Per-level plane byte sizes (parallel to planes)
        squared_errors: Per-level squared error after k planes (num_planes + 1
            values each); empty when rebuilt from a retrieval
    """

    planes: list[list[bytes]]
    sizes: list[list[int]]
    squared_errors: list[list[float]] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_parallel(self) -> "EncodedLevels":
        if len(self.planes) != len(self.level_shapes) or len(self.sizes) != len(self.planes):
            raise ValueError("planes, sizes and level_shapes must cover the same levels")
        for i, (planes, sizes) in enumerate(zip(self.planes, self.sizes)):
            if len(planes) != len(sizes) or len(planes) > self.num_planes:
                raise ValueError(f"Level {i}: {len(planes)} planes, {len(sizes)} sizes")
        return self


class CompressedLevels(EncodedLevels):
    """Planes after lossless level compression.

    Attributes:
        stopping_indices: Per level, the number of leading planes compressed
    """

    stopping_indices: list[int]


class RetrievedLevels(LevelLayout):
    """Leading planes of each level read back from a subset of tiers.

    Attributes:
        planes: Per-level plane prefixes, still compressed
        stopping_indices: Per-level stopping indices from the compressor
        tiers_used: Number of tiers the planes came from
    """

    planes: list[list[bytes]]
    stopping_indices: list[int]
    tiers_used: int = Field(default=0, ge=0)
