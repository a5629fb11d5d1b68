"""
YAML loading with source positions, for manifests and configuration

:func:`marked_yaml_load` behaves like ``yaml.safe_load``, except that
mappings, sequences, strings and integers come back as the subclasses
`dict_node`, `list_node`, `str_node` and `int_node`. These carry the
``start_mark`` and ``end_mark`` (``yaml.error.Mark``) of the node they
were read from, so that :func:`validate_yaml` can point at the line a
schema violation is on::

    manifest.yaml, line 16: devShell/inputs: 'tool' is not of type 'array'

Use :func:`raw_tree` to get plain Python objects back.
"""

import yaml
import jsonschema
from yaml.error import Mark


class ValidationError(Exception):
    """A document is not valid YAML, or does not match its schema

    `mark` is a ``Mark`` or any (part of a) document to look for one in;
    `wrapped` is the underlying YAML or jsonschema error.
    """
    def __init__(self, mark, message=None, wrapped=None):
        Exception.__init__(self, message)
        self.mark = mark if isinstance(mark, Mark) else _find_mark(mark)
        self.message = message
        self.wrapped = wrapped

    def __str__(self):
        if self.mark is None:
            where = '<unknown location>'
        else:
            where = '%s, line %d' % (self.mark.name, self.mark.line + 1)
        return '%s: %s' % (where, self.message)


def _find_mark(doc):
    """The first start_mark found in `doc`, depth first"""
    mark = getattr(doc, 'start_mark', None)
    if mark is not None:
        return mark
    if isinstance(doc, dict):
        children = [x for item in doc.items() for x in item]
    elif isinstance(doc, list):
        children = doc
    else:
        return None
    for child in children:
        mark = _find_mark(child)
        if mark is not None:
            return mark
    return None


class dict_node(dict):
    pass


class list_node(list):
    pass


class str_node(str):
    pass


class int_node(int):
    pass


def _marked(obj, node):
    obj.start_mark = node.start_mark
    obj.end_mark = node.end_mark
    return obj


class MarkedLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` producing marked nodes

    `filecaption` replaces the stream name in the marks.
    """
    def __init__(self, stream, filecaption=None):
        yaml.SafeLoader.__init__(self, stream)
        if filecaption is not None:
            self.name = filecaption

    # Containers are constructed deep so that they are complete before
    # being copied into a node.
    def construct_marked_map(self, node):
        return _marked(dict_node(self.construct_mapping(node, deep=True)), node)

    def construct_marked_seq(self, node):
        return _marked(list_node(self.construct_sequence(node, deep=True)), node)

    def construct_marked_str(self, node):
        return _marked(str_node(self.construct_scalar(node)), node)

    def construct_marked_int(self, node):
        return _marked(int_node(self.construct_yaml_int(node)), node)


for _tag, _constructor in [('map', MarkedLoader.construct_marked_map),
                           ('seq', MarkedLoader.construct_marked_seq),
                           ('str', MarkedLoader.construct_marked_str),
                           ('int', MarkedLoader.construct_marked_int)]:
    MarkedLoader.add_constructor('tag:yaml.org,2002:' + _tag, _constructor)


def marked_yaml_load(stream, filecaption=None):
    """Loads a single document; YAML errors become `ValidationError`"""
    loader = MarkedLoader(stream, filecaption)
    try:
        return loader.get_single_data()
    except yaml.YAMLError as e:
        raise ValidationError(getattr(e, 'problem_mark', None), str(e), e)
    finally:
        loader.dispose()


def load_yaml_from_file(filename):
    with open(filename) as f:
        return marked_yaml_load(f, filename)


def validate_yaml(doc, schema):
    """Validates `doc` against the JSON schema `schema`

    The error message is prefixed with the location and the path of the
    offending value, e.g. ``config.yaml, line 3: fetch_retries: ...``.
    """
    try:
        jsonschema.validate(doc, schema)
    except jsonschema.ValidationError as e:
        # booleans and floats carry no mark; fall back to the document
        mark = _find_mark(e.instance) or _find_mark(doc)
        path = '/'.join(str(p) for p in e.absolute_path)
        raise ValidationError(mark, '%s: %s' % (path, e.message) if path else e.message, e)


_raw_scalars = (bool, int, float, str, type(None))


def raw_tree(doc):
    """
    Returns a copy of `doc` made of plain dict/list/str/int etc.
    """
    if isinstance(doc, dict):
        return dict((raw_tree(key), raw_tree(value)) for key, value in doc.items())
    elif isinstance(doc, (list, tuple)):
        return [raw_tree(child) for child in doc]
    for cls in _raw_scalars:
        if isinstance(doc, cls):
            return doc if cls is type(None) else cls(doc)
    raise TypeError('document contains illegal type %r' % type(doc))
