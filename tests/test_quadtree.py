import numpy as np
import pytest

from particle import Particle
from quadtree import BoundingBox, QuadTree


def make_particle(x, y, color=0, radius=1.0):
    return Particle(position=np.array([x, y]), velocity=np.zeros(2), color=color, radius=radius)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def test_bounding_box_rejects_negative_size():
    with pytest.raises(ValueError):
        BoundingBox(0, 0, -1, 10)
    with pytest.raises(ValueError):
        BoundingBox(0, 0, 10, -1)


def test_bounding_box_edges_are_inclusive():
    box = BoundingBox(0, 0, 10, 10)
    assert box.contains(0, 0)
    assert box.contains(10, 10)
    assert not box.contains(10.001, 5)
    assert box.intersects(BoundingBox(10, 10, 5, 5))
    assert not box.intersects(BoundingBox(10.5, 0, 5, 5))


def test_rejects_bad_capacity_and_depth():
    with pytest.raises(ValueError):
        QuadTree(BoundingBox(0, 0, 100, 100), capacity=0)
    with pytest.raises(ValueError):
        QuadTree(BoundingBox(0, 0, 100, 100), max_depth=0)


def test_query_of_root_returns_every_inserted_particle_once(rng):
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=4)
    positions = rng.uniform(0, 100, (300, 2))
    for i, (x, y) in enumerate(positions):
        assert tree.insert(make_particle(x, y), i)

    found = tree.query_indices(tree.boundary)
    assert sorted(found.tolist()) == list(range(300))


def test_children_partition_parent_exactly():
    tree = QuadTree(BoundingBox(10, 20, 80, 60), capacity=4)
    tree.subdivide()

    parent = tree.node_boundary(0)
    boxes = [tree.node_boundary(c) for c in tree.children(0)]
    nw, ne, sw, se = boxes
    assert nw == BoundingBox(10, 20, 40, 30)
    assert ne == BoundingBox(50, 20, 40, 30)
    assert sw == BoundingBox(10, 50, 40, 30)
    assert se == BoundingBox(50, 50, 40, 30)

    # Same total area and no pair overlaps with positive area
    assert sum(b.width * b.height for b in boxes) == pytest.approx(parent.width * parent.height)
    for i, a in enumerate(boxes):
        for b in boxes[i + 1:]:
            overlap_w = min(a.x + a.width, b.x + b.width) - max(a.x, b.x)
            overlap_h = min(a.y + a.height, b.y + b.height) - max(a.y, b.y)
            assert overlap_w <= 0 or overlap_h <= 0


def test_subdividing_twice_is_refused():
    tree = QuadTree(BoundingBox(0, 0, 100, 100))
    tree.subdivide()
    with pytest.raises(RuntimeError):
        tree.subdivide()


def test_full_node_subdivides_and_hands_points_down():
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=4)
    for i, (x, y) in enumerate([(10, 10), (60, 10), (10, 60), (60, 60)]):
        tree.insert(make_particle(x, y), i)
    assert not tree.is_divided()
    assert tree.point_count() == 4

    tree.insert(make_particle(20, 20), 4)
    assert tree.is_divided()
    assert tree.point_count() == 0
    nw, ne, sw, se = tree.children()
    assert [tree.point_count(c) for c in (nw, ne, sw, se)] == [2, 1, 1, 1]


def test_leaves_never_exceed_capacity(rng):
    tree = QuadTree(BoundingBox(0, 0, 256, 256), capacity=3, max_depth=20)
    for i, (x, y) in enumerate(rng.uniform(0, 256, (500, 2))):
        tree.insert(make_particle(x, y), i)

    for node in range(tree.num_nodes):
        if tree.is_divided(node):
            assert tree.point_count(node) == 0
        else:
            assert tree.point_count(node) <= 3


def test_point_on_shared_edge_goes_to_first_child():
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=1)
    tree.subdivide()
    assert tree.insert(make_particle(50, 50), 0)
    nw = tree.children()[0]
    assert tree.point_count(nw) == 1


def test_range_query_matches_brute_force(rng):
    tree = QuadTree(BoundingBox(0, 0, 200, 100), capacity=2)
    positions = rng.uniform([0, 0], [200, 100], (400, 2))
    for i, (x, y) in enumerate(positions):
        tree.insert(make_particle(x, y), i)

    for _ in range(50):
        x, y = rng.uniform([-20, -20], [200, 100])
        w, h = rng.uniform(0, 80, 2)
        window = BoundingBox(x, y, w, h)
        expected = {i for i, (px, py) in enumerate(positions) if window.contains(px, py)}
        found = tree.query_indices(window).tolist()
        assert len(found) == len(set(found))
        assert set(found) == expected


def test_insert_outside_root_is_a_noop():
    tree = QuadTree(BoundingBox(0, 0, 100, 100))
    assert not tree.insert(make_particle(150, 50), 0)
    assert tree.num_nodes == 1
    assert tree.num_points == 0
    assert len(tree.query_indices(BoundingBox(-1000, -1000, 2000, 2000))) == 0


def test_reinserting_an_index_supersedes_the_old_copy():
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=2)
    tree.insert(make_particle(10, 10), 0)
    tree.insert(make_particle(90, 90), 1)
    tree.insert(make_particle(80, 80), 0)

    assert sorted(tree.query_indices(tree.boundary).tolist()) == [0, 1]
    assert len(tree.query_indices(BoundingBox(0, 0, 20, 20))) == 0
    assert tree.query_indices(BoundingBox(75, 75, 10, 10)).tolist() == [0]


def test_moving_an_index_outside_root_drops_its_old_copy():
    tree = QuadTree(BoundingBox(0, 0, 100, 100))
    assert tree.insert(make_particle(10, 10), 0)
    assert tree.insert(make_particle(20, 20), 1)

    assert not tree.insert(make_particle(150, 50), 0)
    assert not tree.insert(make_particle(float('nan'), 50), 1)
    assert len(tree.query_indices(tree.boundary)) == 0


def test_coincident_points_stop_at_max_depth():
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=1, max_depth=3)
    for i in range(10):
        assert tree.insert(make_particle(10, 10), i)

    assert tree.num_nodes == 1 + 4 * 3
    assert sorted(tree.query_indices(tree.boundary).tolist()) == list(range(10))


def test_query_returns_copies_with_particle_data():
    tree = QuadTree(BoundingBox(0, 0, 100, 100))
    tree.insert(Particle(np.array([30.0, 40.0]), np.array([1.0, -2.0]), 3, 2.5), 7)

    (copy,) = tree.query(BoundingBox(25, 35, 10, 10))
    assert copy.position.tolist() == [30.0, 40.0]
    assert copy.velocity.tolist() == [1.0, -2.0]
    assert copy.color == 3
    assert copy.radius == 2.5


def test_clear_resets_to_empty_root(rng):
    tree = QuadTree(BoundingBox(0, 0, 100, 100), capacity=1)
    for i, (x, y) in enumerate(rng.uniform(0, 100, (50, 2))):
        tree.insert(make_particle(x, y), i)
    assert tree.num_nodes > 1

    tree.clear()
    assert tree.num_nodes == 1
    assert not tree.is_divided()
    assert len(tree.query_indices(tree.boundary)) == 0
    assert tree.node_boundaries() == [tree.boundary]


def test_build_counts_particles_outside_root():
    tree = QuadTree(BoundingBox(0, 0, 100, 100))
    positions = np.array([[10.0, 10.0], [120.0, 10.0], [50.0, 50.0]])
    dropped = tree.build(positions, np.zeros((3, 2)), np.ones(3), np.zeros(3, dtype=np.int32))

    assert dropped == 1
    assert sorted(tree.query_indices(tree.boundary).tolist()) == [0, 2]
