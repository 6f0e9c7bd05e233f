"""Nickname / given-name variant table.

Each group lists a formal name first, followed by its common variants.  A
name may belong to several groups ("alex", "harry"); two names are variants
when they share at least one group.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

DEFAULT_NICKNAME_GROUPS: list[list[str]] = [
    ["abigail", "abby", "abbie", "gail"],
    ["alexander", "alex", "al", "xander", "sasha"],
    ["alexandra", "alex", "lexi", "sandra", "sasha"],
    ["andrew", "andy", "drew"],
    ["anthony", "tony"],
    ["benjamin", "ben", "benny", "benji"],
    ["charles", "charlie", "chuck", "chas"],
    ["christopher", "chris", "topher", "kit"],
    ["christine", "chris", "christina", "tina"],
    ["daniel", "dan", "danny"],
    ["david", "dave", "davey"],
    ["deborah", "deb", "debbie", "debra"],
    ["donald", "don", "donnie"],
    ["edward", "ed", "eddie", "ted", "ned"],
    ["elizabeth", "liz", "lizzie", "beth", "betty", "eliza", "betsy"],
    ["frederick", "fred", "freddie"],
    ["gregory", "greg"],
    ["harold", "harry", "hal"],
    ["henry", "harry", "hank"],
    ["james", "jim", "jimmy", "jamie"],
    ["jeffrey", "jeff", "geoffrey"],
    ["jennifer", "jen", "jenny"],
    ["john", "jack", "johnny", "jon"],
    ["jonathan", "jon", "jonny", "nathan"],
    ["joseph", "joe", "joey"],
    ["joshua", "josh"],
    ["katherine", "kate", "katie", "kathy", "cathy", "catherine", "kat", "kathryn"],
    ["kenneth", "ken", "kenny"],
    ["lawrence", "larry", "laurence"],
    ["margaret", "maggie", "meg", "peggy", "marge", "greta"],
    ["matthew", "matt"],
    ["michael", "mike", "mikey", "mick"],
    ["nathaniel", "nate", "nathan"],
    ["nicholas", "nick", "nicky", "nico"],
    ["patricia", "pat", "patty", "trish", "tricia"],
    ["patrick", "pat", "paddy"],
    ["peter", "pete"],
    ["raymond", "ray"],
    ["rebecca", "becky", "becca"],
    ["richard", "rick", "ricky", "rich", "dick"],
    ["robert", "bob", "bobby", "rob", "robbie", "bert"],
    ["ronald", "ron", "ronnie"],
    ["samantha", "sam", "sammy"],
    ["samuel", "sam", "sammy"],
    ["stephen", "steve", "steven", "stevie"],
    ["susan", "sue", "suzie", "susie"],
    ["thomas", "tom", "tommy"],
    ["timothy", "tim", "timmy"],
    ["victoria", "vicky", "tori"],
    ["william", "bill", "billy", "will", "willie", "liam"],
    ["zachary", "zach", "zack"],
]


class NicknameTable:
    """Symmetric lookup of given-name variants."""

    def __init__(self, groups: Iterable[Iterable[str]] = DEFAULT_NICKNAME_GROUPS) -> None:
        self._groups: list[list[str]] = []
        self._membership: dict[str, set[int]] = {}
        for group in groups:
            self.add_group(group)

    def add_group(self, names: Iterable[str]) -> None:
        group = [n.strip().lower() for n in names if n and n.strip()]
        if len(group) < 2:
            return
        group_id = len(self._groups)
        self._groups.append(group)
        for name in group:
            self._membership.setdefault(name, set()).add(group_id)

    def are_variants(self, a: str, b: str) -> bool:
        a, b = a.lower(), b.lower()
        if not a or not b:
            return False
        if a == b:
            return True
        return bool(self._membership.get(a, set()) & self._membership.get(b, set()))

    def canonical(self, name: str) -> str:
        """Formal form of *name* (first group in table order), else *name* itself."""
        name = name.lower()
        group_ids = self._membership.get(name)
        if not group_ids:
            return name
        return self._groups[min(group_ids)][0]

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, list[str]] | None) -> NicknameTable:
        """Default table extended by ``{formal_name: [variants, ...]}`` overrides."""
        table = cls()
        for formal, variants in (overrides or {}).items():
            table.add_group([formal, *variants])
        return table
