"""Tests for semantic zoom, viewport culling and the LOD controller"""

import math

import pytest

from graphlod.models import CameraState, GraphData, Node
from graphlod.services.render import ViewportRenderer
from graphlod.services.semantic_zoom import (
    LOD_SETTINGS,
    GraphExtent,
    LODController,
    LODState,
    ZoomLevel,
    compute_visible_node_ids,
    get_zoom_level_for_ratio,
    identity_reducer,
    is_in_viewport,
    overview_reducer,
    project_to_viewport,
)


@pytest.fixture
def square_graph() -> GraphData:
    """Corners of a 100x100 square plus its centre."""
    return GraphData(nodes=[
        Node(id="sw", x=0, y=0),
        Node(id="ne", x=100, y=100),
        Node(id="c", x=50, y=50),
    ])


class TestZoomLevels:
    """Test zoom band selection from the camera ratio"""

    @pytest.mark.parametrize("ratio,expected", [
        (0.01, ZoomLevel.DETAILED),
        (1.0, ZoomLevel.DETAILED),
        (2.0, ZoomLevel.DETAILED),
        (2.01, ZoomLevel.OVERVIEW),
        (5.0, ZoomLevel.OVERVIEW),
        (5.01, ZoomLevel.CLUSTER),
        (200, ZoomLevel.CLUSTER),
    ])
    def test_bands(self, ratio, expected):
        assert get_zoom_level_for_ratio(ratio) == expected

    def test_zoom_level_ordering(self):
        assert ZoomLevel.CLUSTER < ZoomLevel.OVERVIEW < ZoomLevel.DETAILED

    def test_band_settings(self):
        assert LOD_SETTINGS[ZoomLevel.CLUSTER].render_labels is False
        assert LOD_SETTINGS[ZoomLevel.OVERVIEW].label_rendered_size_threshold == 15
        assert LOD_SETTINGS[ZoomLevel.OVERVIEW].node_reducer is overview_reducer
        assert LOD_SETTINGS[ZoomLevel.DETAILED].label_rendered_size_threshold == 8
        assert LOD_SETTINGS[ZoomLevel.DETAILED].node_reducer is identity_reducer


class TestReducers:
    """Test the per-band node reducers"""

    def test_overview_hides_plain_labels_and_shrinks(self):
        data = {"label": "a", "size": 10, "isCluster": False, "color": "#fff"}
        reduced = overview_reducer("a", data)
        assert reduced["label"] == ""
        assert reduced["size"] == pytest.approx(8)
        assert reduced["color"] == "#fff"
        assert data["size"] == 10

    def test_overview_keeps_cluster_labels(self):
        reduced = overview_reducer("0,0", {"label": "Cluster (3)", "size": 10, "isCluster": True})
        assert reduced["label"] == "Cluster (3)"

    def test_identity_returns_copy(self):
        data = {"label": "a", "size": 3}
        reduced = identity_reducer("a", data)
        assert reduced == data
        assert reduced is not data


class TestProjection:
    """Test graph-to-viewport projection"""

    def test_extent_normalizes_to_unit_square(self, square_graph):
        extent = GraphExtent.from_nodes(square_graph.nodes)
        assert extent.normalize(0, 0) == (0, 0)
        assert extent.normalize(100, 100) == (1, 1)
        assert extent.normalize(50, 50) == (0.5, 0.5)

    def test_extent_of_single_point(self):
        extent = GraphExtent.from_nodes([Node(id=1, x=7, y=7)])
        assert extent.span == 1.0
        assert extent.normalize(7, 7) == (0.5, 0.5)

    def test_centre_maps_to_viewport_centre(self, square_graph):
        extent = GraphExtent.from_nodes(square_graph.nodes)
        camera = CameraState(ratio=1.0, width=800, height=600)
        assert project_to_viewport(50, 50, camera, extent) == (400, 300)

    def test_scale_and_y_flip(self, square_graph):
        extent = GraphExtent.from_nodes(square_graph.nodes)
        camera = CameraState(ratio=1.5, width=1024, height=768)
        px, py = project_to_viewport(100, 100, camera, extent)
        # 768 / 1.5 = 512 pixels per unit, half a unit from the centre
        assert px == pytest.approx(768)
        assert py == pytest.approx(128)

    def test_rotation(self, square_graph):
        extent = GraphExtent.from_nodes(square_graph.nodes)
        camera = CameraState(ratio=1.5, angle=math.pi, width=1024, height=768)
        px, py = project_to_viewport(100, 100, camera, extent)
        assert px == pytest.approx(256)
        assert py == pytest.approx(640)

    def test_rotated_camera(self):
        camera = CameraState(angle=1.0)
        assert camera.rotated(250).angle == pytest.approx(0.5)
        assert camera.angle == 1.0


class TestViewportCulling:
    """Test visibility against the viewport and its margin"""

    def test_margin(self):
        camera = CameraState(width=800, height=600)
        assert is_in_viewport((-50, 10), camera, margin=100) is True
        assert is_in_viewport((-150, 10), camera, margin=100) is False
        assert is_in_viewport((-50, 10), camera, margin=0) is False
        assert is_in_viewport((900, 700), camera, margin=100) is True

    def test_zoomed_out_everything_visible(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=1.5))
        assert compute_visible_node_ids(square_graph.nodes, renderer) == {"sw", "ne", "c"}

    def test_zoomed_in_only_centre_visible(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=0.1))
        assert compute_visible_node_ids(square_graph.nodes, renderer) == {"c"}

    def test_panned_camera(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=0.1, x=1.0, y=1.0))
        assert compute_visible_node_ids(square_graph.nodes, renderer) == {"ne"}


class TestLODController:
    """Test camera move handling"""

    def test_no_graph_or_renderer_is_noop(self, square_graph):
        controller = LODController()
        renderer = ViewportRenderer(square_graph)
        assert controller.handle_camera_moved(None, renderer) is None
        assert controller.handle_camera_moved(square_graph, None) is None
        assert controller.zoom_level is None
        assert renderer.refresh_count == 0

    def test_cluster_band(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=10))
        state = LODController().handle_camera_moved(square_graph, renderer)

        assert state.zoom_level == ZoomLevel.CLUSTER
        assert state.needs_clustering is True
        assert state.visible_node_ids == {"sw", "ne", "c"}
        assert renderer.get_setting("renderLabels") is False
        assert renderer.refresh_count == 1

    def test_overview_band(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=3))
        state = LODController().handle_camera_moved(square_graph, renderer)

        assert state.zoom_level == ZoomLevel.OVERVIEW
        assert state.needs_clustering is False
        assert renderer.get_setting("renderLabels") is True
        assert renderer.get_setting("labelRenderedSizeThreshold") == 15
        assert renderer.get_setting("nodeReducer") is overview_reducer

    def test_detailed_band(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=1))
        controller = LODController()
        controller.handle_camera_moved(square_graph, renderer)

        assert controller.zoom_level == ZoomLevel.DETAILED
        assert renderer.get_setting("labelRenderedSizeThreshold") == 8
        assert renderer.get_setting("nodeReducer") is identity_reducer

    def test_zoom_in_after_zoom_out(self, square_graph):
        renderer = ViewportRenderer(square_graph, CameraState(ratio=3))
        controller = LODController()
        controller.handle_camera_moved(square_graph, renderer)

        renderer.set_camera(CameraState(ratio=1))
        controller.handle_camera_moved(square_graph, renderer)

        assert controller.zoom_level == ZoomLevel.DETAILED
        assert renderer.get_setting("nodeReducer") is identity_reducer
        assert renderer.refresh_count == 2

    def test_margin_is_used(self, square_graph):
        # At ratio 1 the corners sit on the viewport border, at 0.5 they are 100px outside
        camera = CameraState(ratio=1.0, width=200, height=200)
        renderer = ViewportRenderer(square_graph, camera)

        tight = LODController(margin=0).handle_camera_moved(square_graph, renderer)
        loose = LODController(margin=100).handle_camera_moved(square_graph, renderer)

        assert tight.visible_node_ids == {"sw", "ne", "c"}
        assert loose.visible_node_ids == {"sw", "ne", "c"}

        renderer.set_camera(CameraState(ratio=0.5, width=200, height=200))
        tight = LODController(margin=0).handle_camera_moved(square_graph, renderer)
        loose = LODController(margin=100).handle_camera_moved(square_graph, renderer)

        assert tight.visible_node_ids == {"c"}
        assert loose.visible_node_ids == {"sw", "ne", "c"}

    def test_state_to_dict(self):
        state = LODState(zoom_level=ZoomLevel.OVERVIEW, visible_node_ids={1, 2})
        assert state.to_dict() == {
            "zoom_level": 1,
            "zoom_name": "overview",
            "visible_count": 2,
            "needs_clustering": False,
        }
