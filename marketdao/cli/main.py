"""
MarketDAO CLI

Command-line interface for inspecting configuration and running a scripted
governance cycle against an in-memory DAO.

Usage:
    marketdao config [--config FILE] [--json]
    marketdao simulate [--config FILE] [--holders N] [--payout AMOUNT]
"""

import json
from typing import Optional

import click

from ..config import DAOConfig, load_config
from ..constants import MEMBERSHIP_TOKEN_ID
from ..dao import MarketDAO
from ..exceptions import MarketDAOError
from ..governance import ProposalStatus, TreasuryPayload
from ..logger import set_log_level
from ..treasury import NATIVE


def _load(config_path: Optional[str]) -> DAOConfig:
    try:
        return load_config(config_path)
    except MarketDAOError as e:
        raise click.ClickException(f"Invalid configuration: {e}")


def _step(title: str):
    click.echo(click.style(f"▸ {title}", fg="cyan", bold=True))


@click.group()
@click.version_option(version="1.0.0", prog_name="marketdao")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the log level",
)
def cli(log_level: Optional[str]):
    """MarketDAO governance tools."""
    if log_level:
        set_log_level(log_level)


@cli.command("config")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to marketdao.toml")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def config_cmd(config_path: Optional[str], as_json: bool):
    """Print the validated DAO configuration."""
    config = _load(config_path)
    data = config.to_dict()

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(click.style(f"{config.name}", fg="cyan", bold=True))
    for key, value in data.items():
        if key in ("name", "flags"):
            continue
        click.echo(f"  {key:<22} {value}")
    click.echo(f"  {'flags':<22} {config.flags}")
    for flag, enabled in data["flags"].items():
        click.echo(f"    {flag:<20} {'on' if enabled else 'off'}")


@cli.command("simulate")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Path to marketdao.toml")
@click.option("--holders", default=3, show_default=True, type=click.IntRange(1, 20),
              help="Number of genesis holders")
@click.option("--stake", default=100, show_default=True, type=click.IntRange(1),
              help="Genesis tokens per holder")
@click.option("--payout", default=5, show_default=True, type=click.IntRange(1),
              help="Treasury amount requested by the proposal")
def simulate_cmd(config_path: Optional[str], holders: int, stake: int, payout: int):
    """Run purchase → proposal → support → claim → vote → execute."""
    config = _load(config_path)
    if config.token_price == 0:
        config.token_price = 1
    members = [f"member{i}" for i in range(1, holders + 1)]

    try:
        dao = MarketDAO(config, initial_holders={m: stake for m in members})

        _step("Purchase")
        buyer = "buyer"
        bought = dao.purchase_tokens(buyer, config.token_price * 10)
        click.echo(f"  {buyer} bought {bought} tokens (vested now: {dao.vested_balance(buyer)})")
        dao.deposit(NATIVE, payout)
        click.echo(f"  treasury balance: {dao.treasury.total_balance(NATIVE)}")

        _step("Proposal")
        proposer = members[0]
        pid = dao.create_proposal(proposer, "Pay the auditor", TreasuryPayload(buyer, payout))
        click.echo(f"  proposal #{pid} created by {proposer}")

        _step("Support")
        for member in members:
            dao.add_support(pid, member, dao.vested_balance(member))
            proposal = dao.get_proposal(pid)
            click.echo(f"  {member} supports; total {proposal.support_total} ({proposal.status.name})")
            if proposal.election_triggered:
                break
        click.echo(
            f"  snapshot {proposal.snapshot_total_votes}, "
            f"locked {dao.treasury.locked(NATIVE)}"
        )

        _step("Claim & vote")
        for member in members:
            if not dao.is_election_active(pid):
                break
            claimed = dao.claim_voting_tokens(pid, member)
            dao.vote(pid, member, approve=True)
            yes, no = dao.vote_totals(pid)
            click.echo(f"  {member} voted yes with {claimed}; yes={yes} no={no}")

        if dao.is_election_active(pid):
            dao.set_block_height(proposal.election_end)
        resolution = dao.resolve(pid)
        click.echo(f"  resolution: {proposal.resolution_label or resolution}")

        _step("Execute")
        if proposal.resolution == ProposalStatus.PASSED:
            changes = dao.execute(pid)
            click.echo(f"  executed: {changes}")
        else:
            click.echo("  nothing to execute")

        click.echo()
        click.echo(click.style("Final state", fg="green", bold=True))
        click.echo(f"  {buyer} native received: {sum(t.amount for t in dao.treasury.outbox)}")
        click.echo(f"  membership supply: {dao.ledger.total_supply(MEMBERSHIP_TOKEN_ID)}")
        click.echo(f"  treasury balance: {dao.treasury.total_balance(NATIVE)}")
    except MarketDAOError as e:
        raise click.ClickException(f"Simulation failed: {type(e).__name__}: {e}")


def main():
    cli()


if __name__ == "__main__":
    main()
