# keygate/bot/privileges.py
"""
Maps Discord guild membership onto engine privilege tiers.
Role names come from settings so the engine never sees them.
"""
from typing import Set

from keygate.services.cooldown import PrivilegeTier


def resolve_tiers(member, settings) -> Set[PrivilegeTier]:
    """
    Resolve the privilege tiers a member holds.

    Args:
        member: discord.Member (anything with .id, .roles and .premium_since)
        settings: keygate Settings (role names, owner id)

    Returns:
        Set of PrivilegeTier; empty for plain users and for DMs where the
        caller is a discord.User without roles.
    """
    names = {role.name for role in getattr(member, "roles", None) or []}
    tiers: Set[PrivilegeTier] = set()

    if settings.role_operator in names or (
        settings.discord_owner_id is not None and member.id == settings.discord_owner_id
    ):
        tiers.add(PrivilegeTier.OPERATOR)
    if settings.role_fast_track in names:
        tiers.add(PrivilegeTier.FAST_TRACK)
    # Boosters are recognised by the role name or by Discord's own boost flag
    if settings.role_booster in names or getattr(member, "premium_since", None) is not None:
        tiers.add(PrivilegeTier.BOOSTER)
    if settings.role_premium in names:
        tiers.add(PrivilegeTier.PREMIUM)
    return tiers


def is_operator(member, settings) -> bool:
    return PrivilegeTier.OPERATOR in resolve_tiers(member, settings)
