"""
Reference data: beneficiaries (with the government ID used as the
out-of-band verification reference) and AED exchange rates.

The directory is read-only at runtime; seed it at startup.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from remitdesk.store.models import Beneficiary, ExchangeRate

DEFAULT_BENEFICIARIES = [
    Beneficiary(id="123", principalId="agent1", title="Bank of China 1234567890", name="Zhang San",
                country="CN", currency="CNY", accountNumber="1234567890", bankName="Bank of China",
                idNumber="784-1990-1234567-1", idExpiry="2030-12-31"),
    Beneficiary(id="124", principalId="agent1", title="ICBC - 6543210987", name="Li Si",
                country="CN", currency="CNY", accountNumber="6543210987", bankName="ICBC",
                idNumber="784-1985-7654321-2", idExpiry="2029-06-15"),
    Beneficiary(id="125", principalId="agent1", title="John Smith - Wells Fargo", name="John Smith",
                country="US", currency="USD", accountNumber="9876543210", bankName="Wells Fargo",
                idNumber="784-1978-5551234-3", idExpiry="2031-03-01"),
    Beneficiary(id="126", principalId="agent1", title="Mary Johnson - Chase", name="Mary Johnson",
                country="US", currency="USD", accountNumber="1234567890", bankName="Chase Bank",
                idNumber="784-1992-9988776-4", idExpiry="2022-01-31"),
    Beneficiary(id="127", principalId="agent1", title="Raj Patel - SBI", name="Raj Patel",
                country="IN", currency="INR", accountNumber="1122334455", bankName="State Bank of India",
                idNumber="784-1988-3344556-5", idExpiry="2032-09-30",
                transferModes=["BANK_TRANSFER", "UPI"]),
]

DEFAULT_RATES = [
    ExchangeRate(toCountry="CN", toCurrency="CNY", rate=1.89, toCountryName="China"),
    ExchangeRate(toCountry="US", toCurrency="USD", rate=0.27, toCountryName="United States"),
    ExchangeRate(toCountry="IN", toCurrency="INR", rate=22.50, toCountryName="India"),
    ExchangeRate(toCountry="GB", toCurrency="GBP", rate=0.21, toCountryName="United Kingdom"),
    ExchangeRate(toCountry="EU", toCurrency="EUR", rate=0.25, toCountryName="European Union"),
    ExchangeRate(toCountry="JP", toCurrency="JPY", rate=40.50, toCountryName="Japan"),
    ExchangeRate(toCountry="AU", toCurrency="AUD", rate=0.41, toCountryName="Australia"),
    ExchangeRate(toCountry="CA", toCurrency="CAD", rate=0.37, toCountryName="Canada"),
    ExchangeRate(toCountry="SG", toCurrency="SGD", rate=0.37, toCountryName="Singapore"),
    ExchangeRate(toCountry="MY", toCurrency="MYR", rate=1.28, toCountryName="Malaysia"),
]


class BeneficiaryDirectory:
    def __init__(self, beneficiaries: Optional[Iterable[Beneficiary]] = None):
        self._items: List[Beneficiary] = list(DEFAULT_BENEFICIARIES if beneficiaries is None else beneficiaries)

    def for_principal(self, principal_id: str) -> List[Beneficiary]:
        return [b for b in self._items if b.principalId == principal_id and b.isActive]

    def find(self, principal_id: str, beneficiary_id: Optional[str] = None,
             name: Optional[str] = None) -> Optional[Beneficiary]:
        """Match by id first, then by case-insensitive name substring."""
        candidates = self.for_principal(principal_id)
        if beneficiary_id:
            for b in candidates:
                if b.id == str(beneficiary_id):
                    return b
        if name:
            needle = name.strip().lower()
            for b in candidates:
                if needle and needle in b.name.lower():
                    return b
        return None

    def by_last_four(self, principal_id: str, last_four: str) -> List[Beneficiary]:
        return [b for b in self.for_principal(principal_id) if b.last_four == last_four]

    def search(self, principal_id: str, *, country: Optional[str] = None, currency: Optional[str] = None,
               transfer_mode: Optional[str] = None, is_active: bool = True, limit: int = 50) -> List[Beneficiary]:
        out = []
        for b in self._items:
            if b.principalId != principal_id or b.isActive != is_active:
                continue
            if country and b.country != country.upper():
                continue
            if currency and b.currency != currency.upper():
                continue
            if transfer_mode and transfer_mode not in b.transferModes:
                continue
            out.append(b)
        return out[:limit]


class RateTable:
    def __init__(self, rates: Optional[Iterable[ExchangeRate]] = None):
        self._rates: Dict[str, ExchangeRate] = {}
        for r in (DEFAULT_RATES if rates is None else rates):
            self._rates[self._key(r.toCountry, r.toCurrency)] = r

    @staticmethod
    def _key(country: str, currency: str) -> str:
        return f"{(country or '').upper()}:{(currency or '').upper()}"

    def lookup(self, country: str, currency: str) -> Optional[ExchangeRate]:
        return self._rates.get(self._key(country, currency))

    def by_currency(self, currency: str) -> Optional[ExchangeRate]:
        cur = (currency or "").upper()
        for r in self._rates.values():
            if r.toCurrency == cur:
                return r
        return None

    def all(self) -> List[ExchangeRate]:
        return list(self._rates.values())
