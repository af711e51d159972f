import itertools

import pytest

from htmlbake.config import Settings, build_resolution
from htmlbake.models import CONTAINER, AnalysisNode, AnalysisTree, ComputedStyle, Rect

_ids = itertools.count(1)


def make_node(type=CONTAINER, rect=(0, 0, 10, 10), tag="DIV", children=(), style=None, **kwargs) -> AnalysisNode:
    """AnalysisNode with device-px geometry and sane defaults for planner tests."""
    node_id = kwargs.pop("id", None) or f"n{next(_ids)}"
    return AnalysisNode(
        id=node_id,
        type=type,
        tag_name=tag,
        html_tag=kwargs.pop("html_tag", tag.lower()),
        rect=Rect(*rect),
        dom_path=kwargs.pop("dom_path", f"{tag.lower()}#{node_id}"),
        style=style or ComputedStyle(),
        children=tuple(children),
        **kwargs,
    )


def make_tree(*children, size=(375, 812), dpr=1.0) -> AnalysisTree:
    root = make_node(
        CONTAINER,
        rect=(0, 0, size[0], size[1]),
        tag="BODY",
        id="root",
        is_root=True,
        children=children,
    )
    return AnalysisTree(root=root, dpr=dpr, viewport=Rect(0, 0, size[0], size[1]))


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def resolution(settings):
    return build_resolution(settings)
