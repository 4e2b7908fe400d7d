"""
merkledrop/cli.py

Command line interface.

    merkledrop build recipients.csv -o manifest.json
    merkledrop proof manifest.json alice.testnet
    merkledrop verify <root> alice.testnet 100 <sibling> <sibling> ...
    merkledrop serve --administrator owner.testnet --ledger-id token.testnet
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Tuple

import click
import trio

from .api import AirdropAPI
from .blockchain.ledger import JsonRpcLedger
from .blockchain.merkle import MerkleTree, normalize_amount, verify_claim
from .config import AirdropConfig, VERSION
from .errors import AirdropError, ProofMalformedError
from .protocol.claims import ClaimCoordinator

logger = logging.getLogger("merkledrop.cli")

LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_MALFORMED = 2


def load_entries(path: Path) -> List[Tuple[str, str]]:
    """
    Read (account, amount) pairs from a CSV or JSON file.

    CSV files need ``account`` and ``amount`` columns. JSON may be an
    ``{account: amount}`` object, a list of ``[account, amount]`` pairs
    or a list of ``{"account", "amount"}`` objects.
    """
    if path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return [(account, str(amount)) for account, amount in data.items()]
        entries = []
        for item in data:
            if isinstance(item, dict):
                entries.append((item["account"], str(item["amount"])))
            else:
                account, amount = item
                entries.append((account, str(amount)))
        return entries

    import pandas as pd

    # Amounts can exceed int64, keep them as text
    df = pd.read_csv(path, dtype=str, skipinitialspace=True)
    missing = {"account", "amount"} - set(df.columns)
    if missing:
        raise click.BadParameter(f"missing column(s): {', '.join(sorted(missing))}", param_hint="ENTRIES")
    df = df.dropna(subset=["account", "amount"])
    return list(zip(df["account"].str.strip(), df["amount"].str.strip()))


def _load_manifest(path: Path) -> dict:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not a JSON manifest: {e}", param_hint="MANIFEST")


@click.group()
@click.version_option(VERSION, prog_name="merkledrop")
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='INFO',
    show_default=True,
    help='Logging verbosity',
)
def cli(log_level: str):
    """Merkle-authorized token airdrops."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)


@cli.command()
@click.argument('entries', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('-o', '--output', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='Write the manifest here instead of stdout')
@click.option('--domain-separated', is_flag=True, default=False,
              help='Prefix leaf and node hashes (0x00 / 0x01)')
def build(entries: Path, output: Path, domain_separated: bool):
    """Build a claims manifest from ENTRIES (CSV or JSON)."""
    try:
        tree = MerkleTree(load_entries(entries), domain_separated=domain_separated)
    except (AirdropError, ValueError, KeyError) as e:
        raise click.ClickException(f"Cannot build tree: {e}")

    manifest = json.dumps(tree.to_manifest(), indent=2)
    if output:
        output.write_text(manifest + "\n", encoding="utf-8")
        logger.info(f"Wrote manifest for {len(tree)} accounts to {output}")
        click.echo(tree.root)
    else:
        click.echo(manifest)


@cli.command()
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('account')
def proof(manifest: Path, account: str):
    """Print ACCOUNT's amount and proof from MANIFEST."""
    data = _load_manifest(manifest)
    claim = data.get("claims", {}).get(account)
    if claim is None:
        raise click.ClickException(f"Account @{account} is not in the manifest")

    click.echo(json.dumps({
        "account": account,
        "amount": claim["amount"],
        "proof": claim["proof"],
        "merkle_root": data.get("merkle_root"),
    }, indent=2))


@cli.command()
@click.argument('root')
@click.argument('account')
@click.argument('amount')
@click.argument('siblings', nargs=-1)
@click.option('--domain-separated', is_flag=True, default=False,
              help='Root was built with prefixed hashes')
def verify(root: str, account: str, amount: str, siblings: Tuple[str, ...], domain_separated: bool):
    """
    Check that ACCOUNT may claim AMOUNT under ROOT.

    Exits 0 when the proof is valid, 1 when it is not and 2 when a
    sibling is not a 32-byte hex hash.
    """
    try:
        valid = verify_claim(account, amount_value(amount), root, list(siblings), domain_separated)
    except ProofMalformedError as e:
        click.echo(f"malformed: {e}", err=True)
        sys.exit(EXIT_MALFORMED)

    click.echo("valid" if valid else "invalid")
    sys.exit(EXIT_VALID if valid else EXIT_INVALID)


def amount_value(raw: str) -> int:
    try:
        return normalize_amount(raw)
    except AirdropError as e:
        raise click.BadParameter(str(e), param_hint="AMOUNT")


@cli.command()
@click.option('--administrator', default=None, help='Initial administrator account')
@click.option('--ledger-id', default=None, help='Token ledger account id')
@click.option('--root', 'merkle_root', default=None, help='Initial committed merkle root')
@click.option('--manifest', type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help='Take the initial root from a manifest')
@click.option('--ledger-host', default=None, help='Ledger JSON-RPC host')
@click.option('--ledger-port', type=int, default=None, help='Ledger JSON-RPC port')
@click.option('--ledger-call-timeout', type=float, default=None,
              help='Seconds before an unanswered ledger call is compensated')
@click.option('--host', 'api_host', default=None, help='API bind host')
@click.option('--port', 'api_port', type=int, default=None, help='API port')
@click.option('--domain-separated', is_flag=True, default=False,
              help='Verify against prefixed hashes')
def serve(manifest: Path, domain_separated: bool, **options):
    """Run the claim API against a JSON-RPC token ledger."""
    if manifest and not options.get("merkle_root"):
        options["merkle_root"] = _load_manifest(manifest).get("merkle_root", "")

    config = AirdropConfig.from_env(
        domain_separated=True if domain_separated else None,
        **options,
    )
    if not config.administrator or not config.ledger_id:
        raise click.UsageError("--administrator and --ledger-id are required (or MERKLEDROP_* env)")

    ledger = JsonRpcLedger(
        config.ledger_id,
        host=config.ledger_host,
        port=config.ledger_port,
        timeout=config.ledger_rpc_timeout,
    )
    coordinator = ClaimCoordinator.from_config(config, ledger)
    api = AirdropAPI(
        coordinator,
        host=config.api_host,
        port=config.api_port,
        max_proof_length=config.max_proof_length,
    )

    logger.info(f"Serving airdrop of @{config.ledger_id} (root {config.merkle_root or '<none>'})")
    try:
        trio.run(api.start)
    except KeyboardInterrupt:
        logger.info("Shutting down")


def main():
    cli()


if __name__ == "__main__":
    main()
