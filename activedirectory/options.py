"""
Entry type options and metadata.

This module provides the :py:class:`Options` class, which holds what an entry
type knows about itself: the filter that selects its entries, the attributes
it stamps onto entries it creates, and its typed fields.
"""

from bisect import bisect
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, cast

from django.core.exceptions import FieldDoesNotExist
from django.utils.functional import cached_property
from django.utils.text import camel_case_to_spaces

from .filters import Filter

if TYPE_CHECKING:
    from .fields import Field
    from .models import Entry

#: The attributes ``class Meta`` may set.
DEFAULT_NAMES = (
    "type_filter",
    "required_attributes",
    "mandatory_attributes",
    "verbose_name",
)


class Options:
    """
    Metadata for an entry type.

    This gets instantiated by parsing the ``Meta`` class for the entry type,
    and is available as ``cls._meta`` on the entry class::

        class Group(Entry):
            class Meta:
                type_filter = {"objectClass": "group"}
                required_attributes = {"objectClass": ["top", "group"]}
                mandatory_attributes = ("sAMAccountName",)

    A subclass without its own ``Meta`` uses its parent's.

    Args:
        meta: The Meta class from the entry class definition.

    """

    def __init__(self, meta) -> None:
        #: The filter every search for this type is and-ed with.  May be a
        #: :py:class:`~activedirectory.filters.Filter`, a mapping of attribute
        #: to value, or ``None`` for no restriction.
        self.type_filter: Filter | Mapping[str, Any] | None = None
        #: Attributes merged into every entry of this type we create.  These
        #: win over what the caller passes.
        self.required_attributes: dict[str, Any] = {}
        #: Attributes the caller must supply to create an entry of this type.
        self.mandatory_attributes: tuple[str, ...] = ()
        #: The verbose name for this type.
        self.verbose_name: str | None = None

        #: This is set up by the :py:class:`~activedirectory.models.EntryBase`
        #: metaclass.  It is not intended to be set by the user.
        self.object_name: str | None = None
        #: This is set up by the :py:class:`~activedirectory.models.EntryBase`
        #: metaclass.  It is not intended to be set by the user.
        self.meta = meta
        #: This is set up by the :py:class:`~activedirectory.models.EntryBase`
        #: metaclass.  It is not intended to be set by the user.
        self.local_fields: list[Field] = []

    def contribute_to_class(self, cls: type["Entry"], name: str) -> None:  # noqa: ARG002
        """
        Used by the :py:class:`~activedirectory.models.EntryBase` metaclass
        to add this :py:class:`Options` instance to an entry class.

        Args:
            cls: The entry class to contribute to.
            name: The name of the options attribute.

        Raises:
            TypeError: ``class Meta`` has attributes we don't know about

        """
        cls._meta = self
        self.model = cls
        self.object_name = cls.__name__
        self.verbose_name = camel_case_to_spaces(self.object_name)

        if self.meta:
            meta_attrs = {k: v for k, v in self.meta.__dict__.items() if not k.startswith("_")}
            for attr_name in DEFAULT_NAMES:
                if attr_name in meta_attrs:
                    setattr(self, attr_name, meta_attrs.pop(attr_name))
                elif hasattr(self.meta, attr_name):
                    setattr(self, attr_name, getattr(self.meta, attr_name))
            # Any leftover attributes must be invalid.
            if meta_attrs != {}:
                msg = "'class Meta' got invalid attribute(s): {}".format(",".join(meta_attrs))
                raise TypeError(msg)
        del self.meta

    def add_field(self, field: "Field") -> None:
        """
        Used by the :py:class:`~activedirectory.models.EntryBase` metaclass to
        add a field to the entry type.  A field with the same name replaces
        the one already there, so subclasses can redeclare inherited fields.

        Args:
            field: The field to add.

        """
        self.local_fields = [f for f in self.local_fields if f.name != field.name]
        self.local_fields.insert(bisect(self.local_fields, field), field)

    def __repr__(self) -> str:
        return f"<Options for {self.object_name}>"

    @cached_property
    def filter(self) -> Filter | None:
        """
        :py:attr:`type_filter` as a :py:class:`~activedirectory.filters.Filter`.

        Returns:
            The filter, or ``None`` if this type imposes no restriction.

        """
        if self.type_filter is None or isinstance(self.type_filter, Filter):
            return self.type_filter
        return Filter.from_mapping(self.type_filter)

    @cached_property
    def fields(self) -> list["Field"]:
        """
        All the typed fields of this entry type, in declaration order.
        """
        return self.local_fields

    @cached_property
    def fields_map(self) -> dict[str, "Field"]:
        """
        A mapping of field names to field instances.
        """
        return {cast("str", field.name): field for field in self.fields}

    @cached_property
    def attributes_map(self) -> dict[str, str]:
        """
        A mapping of field names to directory attribute names.
        """
        return {cast("str", f.name): cast("str", f.ldap_attribute) for f in self.fields}

    def get_field(self, field_name: str) -> "Field":
        """
        Return the field named ``field_name``.

        Raises:
            FieldDoesNotExist: no field with that name exists

        """
        try:
            return self.fields_map[field_name]
        except KeyError as e:
            msg = f"{self.object_name} has no field named '{field_name}'"
            raise FieldDoesNotExist(msg) from e
