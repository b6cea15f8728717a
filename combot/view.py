"""View formatting for Combot displays."""

from dataclasses import dataclass, field
from typing import List, Optional
import discord
from .config import EMBED_FIELD_LIMIT, GM_MENTION_PLACEHOLDER, RECENT_LOG_LINES, REFEREE_ID
from .models import ActionResult, Encounter
from .state import all_pending, format_pending_action
from .tables import HIT_LOCATION_NAMES


@dataclass
class TrackerData:
    """Everything the round tracker shows, independent of Discord."""
    round: int
    encounter_id: str
    initiative: List[str] = field(default_factory=list)
    enemies: List[str] = field(default_factory=list)
    log: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    current_turn: Optional[str] = None
    content: str = ""


def clip(text: str, limit: int = EMBED_FIELD_LIMIT) -> str:
    """Fit text into an embed field, keeping the end."""
    if len(text) <= limit:
        return text
    return "…" + text[-(limit - 1):]


def apply_mentions(content: str, gm_user_id: str) -> str:
    """Turn the GM placeholder into a real mention."""
    if not content:
        return content
    return content.replace(GM_MENTION_PLACEHOLDER, f"<@{gm_user_id}>")


class CombatView:
    """Handles formatting of combat displays."""

    @staticmethod
    def tracker_data(encounter: Encounter) -> TrackerData:
        """Build the round tracker contents for an encounter."""
        data = TrackerData(round=encounter.round, encounter_id=encounter.id)

        for i, p in enumerate(encounter.participants):
            marker = "➤" if i == encounter.current_turn else "　"
            status = f" [{p.damage} dmg]" if p.damage else ""
            afflictions = f" ({', '.join(p.afflictions)})" if p.afflictions else ""
            pending = " ⏳" if p.pending_action else ""
            data.initiative.append(
                f"{marker} **{p.name}** - {p.action_points}/{p.max_action_points} AP{status}{afflictions}{pending}"
            )

        for e in encounter.living_enemies():
            armor = f" [{e.armor_type}]" if e.armor_type != "none" else ""
            damage = f" -{e.damage} HP" if e.damage > 0 else ""
            afflictions = f" ({', '.join(e.afflictions)})" if e.afflictions else ""
            disabled = e.disabled_locations()
            health = ""
            if disabled:
                health = f" [Disabled: {', '.join(HIT_LOCATION_NAMES.get(k, k) for k in disabled)}]"
            data.enemies.append(
                f"**{e.name}** ({e.type}) - {e.weapon} {e.action_points}/{e.max_action_points} AP"
                f"{armor}{damage}{afflictions}{health}"
            )

        data.log = encounter.log[-RECENT_LOG_LINES:]

        gm_pending = False
        for action in all_pending(encounter):
            if action.user_id == REFEREE_ID:
                gm_pending = True
                owner = "GM"
            else:
                participant = encounter.participant(action.user_id)
                owner = participant.name if participant else "Unknown"
            data.pending.append(f"**{owner}**: {format_pending_action(action)}")

        current = encounter.current_participant()
        if current:
            data.current_turn = current.name
            if current.pending_action:
                data.content = f"<@{current.user_id}> complete your pending action!"
            else:
                data.content = f"<@{current.user_id}> it's your turn!"
        elif not encounter.participants:
            data.content = "⚔️ **Combat Started!** Roll initiative to join the fight!"

        if gm_pending:
            data.content += f"\n{GM_MENTION_PLACEHOLDER} choose special effects"

        return data

    @staticmethod
    def tracker_embed(data: TrackerData) -> discord.Embed:
        """Format the round tracker embed."""
        embed = discord.Embed(
            title=f"⚔️ Combat Round {data.round}",
            description=f"**Combat ID:** `{data.encounter_id}`",
            color=0xff0000
        )

        initiative = "\n".join(data.initiative) or "⚔️ **Combat Ready** - Players: Use `/initiative` to join!"
        embed.add_field(name="📊 Initiative Order", value=clip(initiative), inline=False)
        embed.add_field(name="👾 Enemies", value=clip("\n".join(data.enemies) or "*None*"), inline=False)

        if data.log:
            embed.add_field(name="📝 Recent Actions", value=clip("\n".join(data.log)), inline=False)
        if data.pending:
            embed.add_field(name="⏳ Pending Actions", value=clip("\n\n".join(data.pending)), inline=False)

        if data.current_turn:
            embed.set_footer(text=f"Current Turn: {data.current_turn}")
        else:
            embed.set_footer(text="Waiting for players to join")
        return embed

    @staticmethod
    def format_result(result: ActionResult) -> discord.Embed:
        """Format a command result for the acting user."""
        if not result.success:
            return CombatView.format_error(result.message)
        return discord.Embed(description=clip(result.message, 4096), color=0x00ff00)

    @staticmethod
    def format_error(message: str) -> discord.Embed:
        """Format an error message."""
        return discord.Embed(
            title="❌ Error",
            description=message,
            color=0xff0000
        )

    @staticmethod
    def format_success(message: str) -> discord.Embed:
        """Format a success message."""
        return discord.Embed(
            title="✅ Success",
            description=message,
            color=0x00ff00
        )
