import numpy as np
import pytest

from spdemesh import fm_mesh_2d
from spdemesh.options import get_option, get_option_default, reset_options, set_option


class TestOptions:
    def test_defaults(self):
        assert get_option("eval.outside") == "error"
        assert get_option("mesh.offset") == (-0.1, -0.2)
        assert get_option() == get_option_default()

    def test_set_positional_and_keyword(self):
        set_option("eval.outside", "mask")
        set_option(mesh_max_refine=10, mesh_n=4)
        assert get_option(["eval.outside", "mesh.max_refine", "mesh.n"]) == ["mask", 10, 4]

    def test_underscore_key_in_get(self):
        set_option("mesh.n", 3)
        assert get_option("mesh_n") == 3

    def test_reset(self):
        set_option("eval.outside", "mask")
        reset_options()
        assert get_option("eval.outside") == "error"

    def test_unknown_option(self):
        with pytest.raises(KeyError):
            get_option("mesh.colour")
        with pytest.raises(KeyError):
            set_option("mesh.colour", "red")

    def test_invalid_value_rolls_back(self):
        set_option("mesh.n", 5)
        with pytest.raises(ValueError, match="eval.outside"):
            set_option(eval_outside="skip", mesh_n=7)
        assert get_option("mesh.n") == 5
        assert get_option("eval.outside") == "error"

    def test_unknown_key_rolls_back(self):
        with pytest.raises(KeyError):
            set_option(mesh_n=7, mesh_colour="red")
        assert get_option("mesh.n") == 8

    @pytest.mark.parametrize("key,value", [
        ("mesh.n", 0),
        ("mesh.n", 2.5),
        ("mesh.max_refine", -1),
        ("eval.tol", -1.0),
        ("mesh.offset", (0.1, 0.2, 0.3)),
        ("mesh.min_angle", 40.0),
        ("mesh.min_angle", -5.0),
    ])
    def test_validation(self, key, value):
        with pytest.raises(ValueError):
            set_option(key, value)

    def test_large_tolerance_warns(self):
        with pytest.warns(UserWarning, match="eval.tol"):
            set_option("eval.tol", 0.01)

    def test_bad_call_signature(self):
        with pytest.raises(TypeError):
            set_option("eval.outside")
        with pytest.raises(TypeError):
            set_option(1, "mask")


class TestOptionsInMeshing:
    def test_offset_option_used_as_default(self, anchors):
        set_option("mesh.offset", (-0.05, 1.0))
        mesh = fm_mesh_2d(loc=anchors, max_edge=[2.0, 4.0])
        assert mesh.meta["offset"][1] == pytest.approx(1.0)

    def test_min_angle_option_used_as_default(self, anchors):
        set_option("mesh.min_angle", 28)
        mesh = fm_mesh_2d(loc=anchors, max_edge=[2.0, 4.0])
        assert mesh.meta["min_angle"] == 28.0
        assert np.degrees(mesh.triangle_angles.min()) >= 27.5
