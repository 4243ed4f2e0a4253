"""
Output parsing for the external tools.

cdk-cli and lncli print unstructured text; these patterns are the de facto
wire contract between the simulator and the tools. Every function here is
pure so it can be tested against captured output.
"""

import re
from typing import Dict, Iterable, Optional

BALANCE_DIGITS_RE = re.compile(r"[0-9]+")

# Mint quote invoices (any network: lnbc, lnbcrt, ...)
MINT_INVOICE_RE = re.compile(r"lnbc[a-zA-Z0-9]+")

# Regtest invoices created by the Polar nodes
NODE_INVOICE_RE = re.compile(r"lnbcrt[a-zA-Z0-9]+")

# cashuA = v3 token, cashuB = v4 token
TOKEN_RE = re.compile(r"cashu[AB][a-zA-Z0-9_-]+")

# cdk-cli balance line: "0: http://localhost:5551 47435 sat"
MINT_BALANCE_LINE_RE = re.compile(r"^\d+:\s+(\S+)\s+(\d+)\s+(\S+)")

ABBREVIATE_CHARS = 40


def extract_balance(text: Optional[str]) -> int:
    """Last run of decimal digits in the output, or 0 if there is none."""
    if not text:
        return 0
    matches = BALANCE_DIGITS_RE.findall(text)
    if not matches:
        return 0
    return int(matches[-1])


def _first_match(pattern: "re.Pattern", text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = pattern.search(text)
    return match.group(0) if match else None


def extract_mint_invoice(text: Optional[str]) -> Optional[str]:
    """Payment request printed by `cdk-cli mint` while it waits for payment."""
    return _first_match(MINT_INVOICE_RE, text)


def extract_node_invoice(text: Optional[str]) -> Optional[str]:
    """payment_request from `lncli addinvoice` output."""
    return _first_match(NODE_INVOICE_RE, text)


def extract_token(text: Optional[str]) -> Optional[str]:
    """Cashu token from `cdk-cli send` output."""
    return _first_match(TOKEN_RE, text)


def parse_mint_balances(text: Optional[str], mint_urls: Iterable[str]) -> Dict[str, str]:
    """
    Per-mint balances from `cdk-cli balance`.

    Every requested mint starts at "0" so missing mints still show up.
    Found mints become "<amount> <unit>". Mints not requested are ignored.
    """
    results = {url: "0" for url in mint_urls}
    if not text:
        return results

    for line in text.splitlines():
        match = MINT_BALANCE_LINE_RE.match(line.strip())
        if not match:
            continue
        url, amount, unit = match.groups()
        if url in results:
            results[url] = f"{amount} {unit}"
    return results


def abbreviate(value: str, chars: int = ABBREVIATE_CHARS) -> str:
    """Shorten long invoices/tokens for log lines."""
    if len(value) <= chars:
        return value
    return f"{value[:chars]}..."
