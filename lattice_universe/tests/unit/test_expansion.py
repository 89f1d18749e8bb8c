"""
Unit tests for lattice_kernel/expansion.py (forward expansion).

Most cases use one dimension "mass" whose propagation copies the parent's
mass, so a child's mass counts the contributions that reached it.
"""

import pytest

from lattice_compile.hydrate import hydrate_config
from lattice_core.types import DimensionState
from lattice_kernel.expansion import ROOT_KEY, expand_lattice

COPY_MASS = "return parent_dimensions['mass']['value']"


def lattice_config(**overrides):
    payload = {
        "generations": 2,
        "moves": [[1, 0], [0, 1]],
        "propagation": [
            {"key": "mass", "source": COPY_MASS, "defaultValue": 1, "defaultActive": True}
        ],
    }
    payload.update(overrides)
    return hydrate_config(payload)


class TestRoot:
    """Generation-0 seeding."""

    def test_root_only_without_generations(self):
        grid = expand_lattice(lattice_config(generations=0))
        assert list(grid.nodes) == [ROOT_KEY]
        root = grid[ROOT_KEY]
        assert root.generation == 0
        assert root.parents == []
        assert root.children == []
        assert root.dimensions["mass"] == DimensionState(1, True, 1, [])
        assert root.value == 1

    def test_root_only_without_moves(self):
        grid = expand_lattice(lattice_config(moves=[]))
        assert len(grid) == 1

    def test_inactive_default_has_no_contributors(self):
        grid = expand_lattice(
            lattice_config(generations=0, propagation=[{"key": "mass", "defaultValue": 4}])
        )
        assert grid[ROOT_KEY].dimensions["mass"] == DimensionState(4, False, 0, [])

    def test_root_path_meta_only_when_enabled(self):
        assert expand_lattice(lattice_config(generations=0))[ROOT_KEY].path_meta is None
        enabled = expand_lattice(lattice_config(generations=0, binaryEnumerationSupported=True))
        assert enabled[ROOT_KEY].path_meta.samples == [""]


class TestGrowth:
    """Two-move expansion over two generations."""

    def test_node_set_and_generations(self):
        grid = expand_lattice(lattice_config())
        assert list(grid.nodes) == [(0, 0), (1, 0), (0, 1), (2, 0), (1, 1), (0, 2)]
        assert [node.generation for node in grid] == [0, 1, 1, 2, 2, 2]

    def test_diamond_child_has_two_parents(self):
        grid = expand_lattice(lattice_config())
        node = grid[(1, 1)]
        assert node.parents == [(1, 0), (0, 1)]
        assert node.dimensions["mass"] == DimensionState(2, True, 2, [])
        assert node.value == 2

    def test_adjacency_is_symmetric(self):
        grid = expand_lattice(lattice_config())
        for node in grid:
            for child_key in node.children:
                assert node.key in grid[child_key].parents
            for parent_key in node.parents:
                assert node.key in grid[parent_key].children

    @pytest.mark.parametrize("mode,expected", [("sum", 2), ("max", 1), ("average", 1)])
    def test_reunification_mode(self, mode, expected):
        grid = expand_lattice(lattice_config(reunification={"mode": mode}))
        assert grid[(1, 1)].dimensions["mass"].value == expected

    def test_personalized_reunification(self):
        config = lattice_config(
            reunification={"mode": "personalized", "source": "return context['count'] * 100"}
        )
        assert expand_lattice(config)[(1, 1)].dimensions["mass"].value == 200

    def test_propagation_context(self):
        source = "return {'value': context['generation'], 'meta': [context['parentKey'], index]}"
        grid = expand_lattice(lattice_config(propagation=[{"key": "mass", "source": source}]))
        assert grid[(0, 1)].dimensions["mass"] == DimensionState(0, True, 1, ["0,0", 1])
        assert grid[(1, 1)].dimensions["mass"].meta == ["1,0", 1, "0,1", 0]

    def test_raising_propagation_leaves_empty_dimension(self):
        grid = expand_lattice(
            lattice_config(propagation=[{"key": "mass", "source": "raise ValueError('x')"}])
        )
        assert grid[(1, 0)].dimensions["mass"] == DimensionState(0, False, 0, [])
        assert grid[(1, 0)].value == 0


class TestRevisit:
    """A key reached again merges into the existing node."""

    def test_root_revisited(self):
        grid = expand_lattice(lattice_config(moves=[[1, 0], [-1, 0]]))
        assert len(grid) == 5
        root = grid[ROOT_KEY]
        assert root.generation == 0
        assert root.parents == [(1, 0), (-1, 0)]
        assert root.dimensions["mass"] == DimensionState(3, True, 3, [])
        assert root.value == 3

    def test_merge_phase_recomputes_value(self):
        grid = expand_lattice(
            lattice_config(
                moves=[[1, 0], [-1, 0]],
                effectiveValueSource="return -1 if context['phase'] == 'merge' else 1",
            )
        )
        assert grid[ROOT_KEY].value == -1
        assert grid[(2, 0)].value == 1


class TestExtensionPoints:
    """Effective value, position and space distortion during expansion."""

    def test_effective_value_formula(self):
        grid = expand_lattice(
            lattice_config(effectiveValueSource="return dimensions['mass']['value'] * 10")
        )
        assert grid[ROOT_KEY].value == 10
        assert grid[(1, 1)].value == 20

    def test_position_axes_fall_back_independently(self):
        grid = expand_lattice(
            lattice_config(positionSource="return {'x': coords['x'] * 2, 'y': 'bad'}")
        )
        position = grid[(1, 1)].position
        assert (position.x, position.y, position.z) == (2, 1, 0)

    def test_position_non_mapping_uses_coordinates(self):
        grid = expand_lattice(lattice_config(positionSource="return [1, 2, 3]"))
        position = grid[(0, 2)].position
        assert (position.x, position.y, position.z) == (0, 2, 0)

    def test_distortion_discard(self):
        grid = expand_lattice(
            lattice_config(spaceDistortionSource="return DISCARD if context['moveIndex'] == 1 else None")
        )
        assert grid[(0, 1)].dimensions["mass"] == DimensionState(0, False, 0, [])
        # only the move-0 arrival from (0, 1) survives, carrying its zero mass
        assert grid[(1, 1)].dimensions["mass"] == DimensionState(0, True, 1, [])
        assert grid[(2, 0)].dimensions["mass"].value == 1

    def test_distortion_rewrite(self):
        grid = expand_lattice(
            lattice_config(
                spaceDistortionSource="return {'value': base_result['value'] + 1, 'meta': [context['childKey']]}"
            )
        )
        assert grid[(1, 0)].dimensions["mass"] == DimensionState(2, True, 1, ["1,0"])


class TestPathEnumeration:
    def test_paths_through_diamond(self):
        grid = expand_lattice(lattice_config(binaryEnumerationSupported=True))
        meta = grid[(1, 1)].path_meta
        assert meta.total == 2
        assert meta.depth == 2
        assert meta.ones_histogram == {1: 2}
        assert meta.samples == ["01", "10"]
        assert meta.sample_complete

    def test_histogram_sums_to_total(self):
        grid = expand_lattice(
            lattice_config(generations=6, moves=[[1, 1], [1, -1]], binaryEnumerationSupported=True)
        )
        meta = grid[(6, 0)].path_meta
        assert meta.total == 20
        assert sum(meta.ones_histogram.values()) == 20
        assert meta.ones_histogram == {3: 20}
        assert meta.sample_complete
        assert len(meta.samples) == 20


class TestOversizedNumbers:
    """Integers beyond float range are treated like non-finite results."""

    def test_propagation_result_dropped(self):
        grid = expand_lattice(lattice_config(propagation=[{"key": "mass", "source": "return 10**400"}]))
        assert grid[(1, 1)].dimensions["mass"] == DimensionState(0, False, 0, [])

    def test_propagation_mapping_value_zeroed(self):
        grid = expand_lattice(
            lattice_config(propagation=[{"key": "mass", "source": "return {'value': 10**400}"}])
        )
        assert grid[(1, 0)].dimensions["mass"] == DimensionState(0, True, 1, [])

    def test_effective_value_falls_back(self):
        grid = expand_lattice(lattice_config(effectiveValueSource="return 10**400"))
        assert grid[ROOT_KEY].value == 1
        assert grid[(1, 1)].value == 2

    def test_personalized_reunification_falls_back_to_sum(self):
        config = lattice_config(reunification={"mode": "personalized", "source": "return 10**400"})
        assert expand_lattice(config)[(1, 1)].dimensions["mass"].value == 2
