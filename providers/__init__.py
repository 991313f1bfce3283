from typing import Dict, Optional, Type

from providers.base import BooruResult, LoginDetails, Provider, ProviderCore
from providers.danbooru import DanbooruProvider
from providers.gelbooru import GelbooruProvider
from providers.moebooru import MoebooruProvider
from providers.yandere import YandereProvider

PROVIDERS: Dict[str, Type[ProviderCore]] = {
    "danbooru": DanbooruProvider,
    "gelbooru": GelbooruProvider,
    "moebooru": MoebooruProvider,
    "yandere": YandereProvider,
}


def create_provider(site: str, url: Optional[str] = None, login: Optional[LoginDetails] = None) -> ProviderCore:
    try:
        provider_cls = PROVIDERS[site.lower()]
    except KeyError:
        raise ValueError(f"Unknown site {site!r}, expected one of {sorted(PROVIDERS)}") from None
    return provider_cls(url, login=login)


__all__ = [
    "BooruResult",
    "DanbooruProvider",
    "GelbooruProvider",
    "LoginDetails",
    "MoebooruProvider",
    "PROVIDERS",
    "Provider",
    "ProviderCore",
    "YandereProvider",
    "create_provider",
]
