from ..exceptions import StoreKeyError


def meta_namespace_key_func(obj):
    """Create a key from the given object for use in a store."""
    try:
        name = obj.metadata.name
        namespace = getattr(obj.metadata, 'namespace', None)
        if namespace is not None:
            return f'{namespace}/{name}'
        else:
            return name
    except Exception as e:
        raise StoreKeyError(obj) from e


class Store:
    """The last known state of all objects an informer has seen."""

    def __init__(self, key_func=None):
        if key_func is None:
            key_func = meta_namespace_key_func
        self.key_func = key_func
        self._items = {}

    def __repr__(self):
        return f'<Store {len(self)} items>'

    def __len__(self):
        return len(self._items)

    def __contains__(self, obj):
        return self.key_func(obj) in self._items

    def add(self, obj):
        """Add or update the given item in the store.
        Returns the item it replaced, if any."""
        key = self.key_func(obj)
        old = self._items.get(key, None)
        self._items[key] = obj
        return old

    def delete(self, obj):
        """Delete the given item from the store.
        Returns the stored item, if any."""
        key = self.key_func(obj)
        return self._items.pop(key, None)

    def get(self, obj):
        """Get an item from the store. Raises KeyError if it's not there."""
        key = self.key_func(obj)
        return self._items[key]

    def keys(self):
        return self._items.keys()

    def list(self):
        """Return a list of all items in the store."""
        return list(self._items.values())

    def clear(self):
        """Remove all items from the store."""
        self._items.clear()
