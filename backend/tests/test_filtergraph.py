"""Typed filter graph builder: rendering and structural validation."""

import pytest

from scenechain.pipeline.filtergraph import Filter, FilterGraph, FilterGraphError


def test_filter_rendering():
    assert Filter.of("null").render() == "null"
    assert Filter.of("scale", -2, 720).render() == "scale=-2:720"
    assert Filter.of("concat", n=3, v=1, a=0).render() == "concat=n=3:v=1:a=0"
    assert Filter.of("volume", 0.5).render() == "volume=0.5"
    assert Filter.of("xfade", transition="fade", duration=1.0, offset=4.0).render() == (
        "xfade=transition=fade:duration=1:offset=4"
    )
    assert Filter.of("amix", normalize=False).render() == "amix=normalize=0"


def test_graph_render_and_map_args():
    graph = (
        FilterGraph()
        .add(["0:v"], [Filter.of("fps", 30)], ["a"])
        .add(["1:v"], [Filter.of("fps", 30)], ["b"])
        .add(["a", "b"], [Filter.of("concat", n=2, v=1, a=0)], ["outv"])
        .mark_output("outv")
    )
    assert graph.render() == "[0:v]fps=30[a];[1:v]fps=30[b];[a][b]concat=n=2:v=1:a=0[outv]"
    assert graph.map_args() == ["-map", "[outv]"]
    assert graph.input_indices == [0, 1]


@pytest.mark.parametrize(
    "build,message",
    [
        (lambda g: g, "empty"),
        (lambda g: g.add(["0:v"], [], ["x"]).mark_output("x"), "no filters"),
        (lambda g: g.add(["missing"], [Filter.of("null")], ["x"]).mark_output("x"), "undefined"),
        (
            lambda g: g.add(["0:v"], [Filter.of("null")], ["x"])
            .add(["1:v"], [Filter.of("null")], ["x"])
            .mark_output("x"),
            "duplicate",
        ),
        (
            lambda g: g.add(["0:v"], [Filter.of("split")], ["x", "y"])
            .add(["x"], [Filter.of("null")], ["out"])
            .mark_output("out"),
            "dangling",
        ),
        (
            lambda g: g.add(["0:v"], [Filter.of("null")], ["x"])
            .add(["x"], [Filter.of("null")], ["y"])
            .add(["x"], [Filter.of("null")], ["z"])
            .mark_output("y")
            .mark_output("z"),
            "more than once",
        ),
        (lambda g: g.add(["0:v"], [Filter.of("null")], ["x"]).mark_output("nope"), "never produced"),
        (lambda g: g.add(["0:v"], [Filter.of("null")], ["bad label"]).mark_output("bad label"), "invalid"),
    ],
)
def test_malformed_graphs_are_rejected(build, message):
    graph = build(FilterGraph())
    with pytest.raises(FilterGraphError, match=message):
        graph.render()
