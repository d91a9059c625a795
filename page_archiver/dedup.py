from typing import List, Set, Tuple

from .references import ResourceReference


def deduplicate(refs: List[ResourceReference]) -> List[ResourceReference]:
    """Sort by target and collapse references that resolve to the same resource.

    Unresolvable entries are dropped. Within a group sharing a target the
    first entry is fetched; entries repeating the context, scope and raw
    text of one already kept are removed, the rest are kept as soft
    duplicates so every occurrence still gets rewritten.
    """
    ordered = sorted((r for r in refs if r.key), key=lambda r: r.key)
    out: List[ResourceReference] = []
    head = None
    seen: Set[Tuple[str, str, str]] = set()
    for ref in ordered:
        sig = (ref.context.value, ref.scope.value, ref.raw_text)
        if head is not None and head.is_same_target(ref):
            if sig in seen:
                continue
            seen.add(sig)
            ref.is_duplicate = True
        else:
            head = ref
            seen = {sig}
            ref.is_duplicate = False
        out.append(ref)
    return out
