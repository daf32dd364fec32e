"""A JAX-friendly frozen dataclass with support for static (aux data) fields."""

import dataclasses
import functools
import sys

import jax
from absl import logging
from typing_extensions import dataclass_transform  # pytype: disable=not-supported-yet

FrozenInstanceError = dataclasses.FrozenInstanceError
_RESERVED_DCLS_FIELD_NAMES = frozenset(("from_tuple", "replace", "to_tuple"))


@dataclass_transform()
def base_dataclass(
    cls=None,
    *,
    init=True,
    repr=True,  # pylint: disable=redefined-builtin
    eq=True,
    frozen=False,
    kw_only: bool = False,
    static_fields=(),
):
    """JAX-friendly wrapper for :py:func:`dataclasses.dataclass`.

    The decorated class is registered as a JAX PyTree. Fields named in
    ``static_fields`` are carried in the tree's aux data instead of its leaves,
    so they must be hashable Python values and changing them triggers a new
    trace under ``jax.jit``. A ``replace`` method is provided for frozen
    classes.

    Args:
        cls: A class to decorate.
        init: See :py:func:`dataclasses.dataclass`.
        repr: See :py:func:`dataclasses.dataclass`.
        eq: See :py:func:`dataclasses.dataclass`.
        frozen: See :py:func:`dataclasses.dataclass`.
        kw_only: See :py:func:`dataclasses.dataclass`.
        static_fields: Names of fields treated as static metadata.

    Returns:
        A JAX-friendly dataclass.
    """

    def dcls(cls):
        return _Dataclass(init, repr, eq, frozen, kw_only, tuple(static_fields))(cls)

    if cls is None:
        return dcls
    return dcls(cls)


class _Dataclass:
    """JAX-friendly wrapper for `dataclasses.dataclass`."""

    def __init__(
        self,
        init=True,
        repr=True,  # pylint: disable=redefined-builtin
        eq=True,
        frozen=False,
        kw_only=False,
        static_fields=(),
    ):
        self.init = init
        self.repr = repr  # pylint: disable=redefined-builtin
        self.eq = eq
        self.frozen = frozen
        self.kw_only = kw_only
        self.static_fields = static_fields

    def __call__(self, cls):
        for base in cls.__bases__:
            if (
                dataclasses.is_dataclass(base)
                and getattr(base, "__dataclass_params__").frozen
                and not self.frozen
            ):
                raise TypeError("cannot inherit non-frozen dataclass from a frozen one")

        version_dependent_args = {}
        version = sys.version_info
        if version.major == 3 and version.minor >= 10:
            version_dependent_args = {"kw_only": self.kw_only}
        # pytype: disable=wrong-keyword-args
        dcls = dataclasses.dataclass(
            cls,
            init=self.init,
            repr=self.repr,
            eq=self.eq,
            frozen=self.frozen,
            **version_dependent_args,
        )
        # pytype: enable=wrong-keyword-args

        fields_names = set(f.name for f in dataclasses.fields(dcls))
        invalid_fields = fields_names.intersection(_RESERVED_DCLS_FIELD_NAMES)
        if invalid_fields:
            raise ValueError(
                f"The following dataclass fields are disallowed: " f"{invalid_fields} ({dcls})."
            )
        unknown_static = set(self.static_fields) - fields_names
        if unknown_static:
            raise ValueError(f"static_fields {sorted(unknown_static)} are not fields of {dcls}.")

        def _from_tuple(args):
            return dcls(**dict(zip(dcls.__dataclass_fields__.keys(), args)))

        def _to_tuple(self):
            return tuple(getattr(self, k) for k in self.__dataclass_fields__.keys())

        def _replace(self, **kwargs):
            return dataclasses.replace(self, **kwargs)

        # Registration at definition time is enough unless the class lives in
        # __main__, where unpickling in a subprocess would not re-import it.
        if dcls.__module__ != "__main__":
            register_dataclass_type_with_jax_tree_util(dcls, self.static_fields)

        static_fields = self.static_fields
        orig_init = dcls.__init__

        @functools.wraps(orig_init)
        def _init(self, *args, **kwargs):
            register_dataclass_type_with_jax_tree_util(dcls, static_fields)
            return orig_init(self, *args, **kwargs)

        setattr(dcls, "from_tuple", _from_tuple)
        setattr(dcls, "to_tuple", _to_tuple)
        setattr(dcls, "replace", _replace)
        setattr(dcls, "__init__", _init)
        setattr(dcls, "__static_fields__", static_fields)

        return dcls


def _dataclass_unflatten(dcls, aux, values):
    """Creates a dataclass instance from a flattened jax.tree_util representation."""
    keys, static_items = aux
    dcls_object = dcls.__new__(dcls)
    attribute_dict = dict(zip(keys, values))
    attribute_dict.update(static_items)
    # Looping over fields instead of keys preserves the declared field order.
    for field in dcls.__dataclass_fields__.values():
        if field.name in attribute_dict:
            object.__setattr__(dcls_object, field.name, attribute_dict[field.name])
    if getattr(dcls_object, "__post_init__", None):
        dcls_object.__post_init__()
    return dcls_object


def _split_fields(d, static_fields):
    dynamic = []
    static = []
    for k, v in sorted(d.__dict__.items()):
        if k in static_fields:
            static.append((k, v))
        else:
            dynamic.append((k, v))
    return dynamic, tuple(static)


@functools.cache
def register_dataclass_type_with_jax_tree_util(data_class, static_fields=()):
    """Register an existing dataclass so JAX knows how to handle it.

    Functions in jax.tree_util then operate over the non-static fields of the
    dataclass, see https://jax.readthedocs.io/en/latest/pytrees.html#extending-pytrees

    Args:
        data_class: A class created using dataclasses.dataclass. It must be
            constructable from keyword arguments corresponding to the members exposed
            in instance.__dict__.
        static_fields: Field names carried as aux data.
    """
    static_fields = frozenset(static_fields)

    def flatten(d):
        dynamic, static = _split_fields(d, static_fields)
        keys = tuple(k for k, _ in dynamic)
        leaves = tuple(v for _, v in dynamic)
        return leaves, (keys, static)

    def flatten_with_keys(d):
        dynamic, static = _split_fields(d, static_fields)
        keys = tuple(k for k, _ in dynamic)
        path = [(jax.tree_util.GetAttrKey(k), v) for k, v in dynamic]
        return path, (keys, static)

    unflatten = functools.partial(_dataclass_unflatten, data_class)
    try:
        jax.tree_util.register_pytree_with_keys(
            nodetype=data_class,
            flatten_with_keys=flatten_with_keys,
            flatten_func=flatten,
            unflatten_func=unflatten,
        )
    except ValueError:
        logging.info("%s is already registered as JAX PyTree node.", data_class)
