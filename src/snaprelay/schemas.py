# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic models for the visual-search result payload.

The models pin down the structure the workflow relies on: a query id plus
an ordered list of result records, each with a detection bounding box,
sub-content and matched products. Structural fields are required. Only the
pricing and rating fields the page omits for some products are nullable,
and opaque fields (``currencyPriceRange`` and the prime-eligibility flags)
accept anything. Unknown keys are kept so the payload round-trips to
callers unchanged. Anything structurally wrong raises
``pydantic.ValidationError``, which the completion race reports as
``PayloadMalformed``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )


# ---------------------------------------------------------------------------
# Product records
# ---------------------------------------------------------------------------


class ColorSwatch(_Payload):
    asin: str
    hex_color: str


class TwisterVariation(_Payload):
    asin: str
    image_url: str


class ProductMetadata(_Payload):
    """One matched product (``bbxAsinMetadataList`` entry)."""

    asin: str
    title: str
    by_line: str
    gl_product_group: str
    image_url: str
    is_adult_product: str
    color_swatches: list[ColorSwatch]
    twister_variations: list[TwisterVariation]
    # nullable on the page
    price: str | None = None
    list_price: str | None = None
    availability: str | None = None
    average_overall_rating: float | None = None
    total_review_count: str | None = None
    # opaque
    currency_price_range: Any = None
    is_eligible_for_prime_shipping: Any = None
    variational_some_prime_eligible: Any = None


# ---------------------------------------------------------------------------
# Detection region
# ---------------------------------------------------------------------------


class BoundingBox(_Payload):
    """Detected region in the query image, in pixels."""

    image_width: float
    image_height: float
    top_left_x: float
    top_left_y: float
    top_right_x: float
    top_right_y: float
    bottom_left_x: float
    bottom_left_y: float
    bottom_right_x: float
    bottom_right_y: float
    tlx: float
    tly: float
    trx: float
    try_: float = Field(alias="try")
    blx: float
    bly: float
    brx: float
    bry: float
    imw: float
    imh: float
    person_id: int = Field(alias="personID")
    person_type: str
    person_score: str
    is_belief_propagation_ethnic: bool


class ResultProperties(_Payload):
    score: str
    label: str
    category: str
    model_name: str
    feature_indices: str
    has_influencer_tagged_asins: bool = Field(alias="hasInfluencerTaggedASINs")
    bounding_box: BoundingBox
    finer_classification: list[Any]


class SubContentProperties(_Payload):
    score: str
    glcode: str


class SubContent(_Payload):
    source: str
    content_type: str
    content: str
    data_source: str
    ref_marker: str
    metric_alias: str
    properties: SubContentProperties
    sub_content: list[Any]


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------


class SearchResult(_Payload):
    """One detected object and the products matched to it."""

    source: str
    content_type: str
    content: str
    data_source: str
    display_launch_point: str
    display_feature_name: str
    bbx_ref_marker: str
    properties: ResultProperties
    sub_content: list[SubContent]
    bbx_asin_list: list[str]
    bbx_asin_metadata_list: list[ProductMetadata]


class ImageSearchResults(_Payload):
    """Result payload of one visual search."""

    query_id: str
    search_results: list[SearchResult]

    def to_json_dict(self) -> dict[str, Any]:
        """Payload in the page's own (camelCase) shape, unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    @property
    def asin_count(self) -> int:
        return sum(len(r.bbx_asin_list) for r in self.search_results)
