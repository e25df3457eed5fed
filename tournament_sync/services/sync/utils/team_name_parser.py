"""Team label parsing.

External systems label teams as "<club> <number><gender>", optionally
followed by a strength indicator in parentheses:

- "Evergem 1H (79)" -> club "Evergem", number 1, gender "H", strength 79
- "Lokerse BC 1D"   -> club "Lokerse BC", number 1, gender "D"
- "BC Brakel 2"     -> club "BC Brakel", number 2
- "Smash For Fun"   -> club "Smash For Fun"

Gender letters: H (heren), D (dames), G (gemengd), M, F.
"""
import re
from dataclasses import dataclass
from typing import Optional

_TRAILING_PARENTHETICAL = re.compile(r'\s*\([^)]*\)\s*$')
_STRENGTH = re.compile(r'\((\d+)\)\s*$')
_WITH_GENDER = re.compile(r'^(.+?)\s+(\d+)([HDGMFhdgmf])?\s*$')
_NUMBER_ONLY = re.compile(r'^(.+?)\s+(\d+)\s*$')


@dataclass(frozen=True)
class ParsedTeamName:
    club_name: str
    team_number: Optional[int] = None
    gender: Optional[str] = None


def parse_team_name(name: str) -> ParsedTeamName:
    """Split a team label into club name, team number and gender letter."""
    clean = _TRAILING_PARENTHETICAL.sub('', name or '').strip()

    match = _WITH_GENDER.match(clean)
    if match:
        gender = match.group(3)
        return ParsedTeamName(
            club_name=match.group(1).strip(),
            team_number=int(match.group(2)),
            gender=gender.upper() if gender else None,
        )

    match = _NUMBER_ONLY.match(clean)
    if match:
        return ParsedTeamName(club_name=match.group(1).strip(), team_number=int(match.group(2)))

    return ParsedTeamName(club_name=clean)


def parse_strength(name: str) -> Optional[int]:
    """Strength indicator from a trailing "(NN)", if any."""
    match = _STRENGTH.search(name or '')
    return int(match.group(1)) if match else None


def normalize_team_name(name: str) -> str:
    """
    Normalize a team label for substring lookups.

    Steps:
    1. Lowercase
    2. Drop parenthetical content
    3. Drop the "bc" (badminton club) token
    4. Drop punctuation
    5. Collapse whitespace

    Examples:
        >>> normalize_team_name("BC Brakel 2G (41)")
        'brakel 2g'
    """
    if not name:
        return ""

    name = name.lower()
    name = re.sub(r'\s*\([^)]*\)\s*', '', name)
    name = re.sub(r'\bbc\b', '', name)
    name = re.sub(r'[^\w\s]', '', name)
    return ' '.join(name.split())
