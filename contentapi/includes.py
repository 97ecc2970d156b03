# Compound documents (https://jsonapi.org/format/#document-compound-documents)
#
# The included documents are nested in the relationship items of the document tree,
# here they're flattened into the top level "included" member:
#   - depth-first, in the order the resources are first reached
#   - every (type, id) is included once, the first occurrence is kept
#   - resources that are part of the primary data are not included again
#
# Inline errors (resources the user may not view) reached through the includes are
# collected separately, they end up in the top level meta.


def iter_nested(document):
    """
    Walk the documents nested in a document, depth-first
    :return: generator of the ResourceNodes and ErrorNodes of the nested documents
    """
    visited = set()
    for nested in document.includes():
        yield from _iter_document(nested, visited)


def _iter_document(document, visited):
    if id(document) in visited:
        # memoized documents are shared between relationship items
        return
    visited.add(id(document))
    for node in document.data:
        yield node
        if id(node) in visited:
            continue
        visited.add(id(node))
        for nested in node.includes():
            yield from _iter_document(nested, visited)


def collect_includes(document) -> list:
    """
    :param document: the top level DocumentNode
    :return: the deduplicated ResourceNodes to include
    """
    primary = {node.identifier for node in document.data if node.identifier is not None}
    seen = set()
    result = []
    for node in iter_nested(document):
        identifier = node.identifier
        if identifier is None or identifier in primary or identifier in seen:
            continue
        seen.add(identifier)
        result.append(node)
    return result


def collect_omitted(document) -> list:
    """
    :return: the ErrorNodes in the primary data and the included documents
    """
    result = []
    for node in list(document.data) + list(iter_nested(document)):
        if node.identifier is None and not any(node is other for other in result):
            result.append(node)
    return result
