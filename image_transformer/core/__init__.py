# image_transformer/core/__init__.py
"""
Core -- transformation decision logic, free of I/O.

Leaf-first: format sniffing, dimension resolution, resize policy and the
upstream fetch policy are pure functions; ``ImagePipeline`` sequences
them around the injected collaborators (``ports``).

Canonical imports:
    from image_transformer.core import ImagePipeline, ImageFormat
    from image_transformer.core.fetch_policy import build_upstream_request
    from image_transformer.core.ports import ImageCodecs
"""
from image_transformer.core.formats import (  # noqa: F401
    ImageFormat,
    detect_format,
    content_type_for,
    parse_output_format,
)
from image_transformer.core.dimensions import (  # noqa: F401
    Dimensions,
    DimensionRequest,
    resolve_dimensions,
    parse_dimension_param,
)
from image_transformer.core.resize_policy import (  # noqa: F401
    FitMethod,
    should_crop_to_fill,
)
from image_transformer.core.domain import (  # noqa: F401
    RawImage,
    RemoteImage,
    TransformedImage,
    ImageMetadata,
)
from image_transformer.core.pipeline import ImagePipeline  # noqa: F401
