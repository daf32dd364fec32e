import jax
import jax.numpy as jnp
import pytest

from gpu_hashtable.core.dataclass import FrozenInstanceError, base_dataclass


@base_dataclass(frozen=True, static_fields=("capacity",))
class WithStaticFields:
    x: jax.Array
    capacity: int


def test_dataclass_static_fields_roundtrip_and_jit():
    obj = WithStaticFields(x=jnp.arange(3, dtype=jnp.int32), capacity=3)

    leaves, treedef = jax.tree_util.tree_flatten(obj)
    assert len(leaves) == 1
    assert (leaves[0] == obj.x).all()

    obj2 = jax.tree_util.tree_unflatten(treedef, leaves)
    assert obj2.capacity == 3
    assert (obj2.x == obj.x).all()

    @jax.jit
    def f(o: WithStaticFields):
        # Static fields are plain Python values while tracing.
        assert isinstance(o.capacity, int)
        return o.replace(x=o.x + o.capacity)

    out = f(obj)
    assert out.capacity == 3
    assert (out.x == obj.x + 3).all()


def test_static_field_change_changes_treedef():
    a = WithStaticFields(x=jnp.zeros(2), capacity=2)
    b = WithStaticFields(x=jnp.zeros(2), capacity=4)
    assert jax.tree_util.tree_structure(a) != jax.tree_util.tree_structure(b)


def test_frozen_dataclass_rejects_assignment():
    obj = WithStaticFields(x=jnp.zeros(2), capacity=2)
    with pytest.raises(FrozenInstanceError):
        obj.capacity = 5


def test_unknown_static_field_rejected():
    with pytest.raises(ValueError):

        @base_dataclass(static_fields=("missing",))
        class Broken:
            x: jax.Array


def test_reserved_field_name_rejected():
    with pytest.raises(ValueError):

        @base_dataclass
        class Broken:
            replace: jax.Array
