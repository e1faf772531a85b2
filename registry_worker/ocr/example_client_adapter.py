"""Example vision client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseVisionClient and register the provider in VisionClientFactory.
"""

from registry_worker.ocr.client_base import BaseVisionClient
from registry_worker.ocr.models import ProviderRequest, ProviderResponse


class ExampleClientAdapter(BaseVisionClient):
    """Example adapter that answers every request with a fixed index page.

    No network calls. Useful for local development and tests.
    """

    provider = "example"

    PAGE_TEXT = (
        "Circonscription foncière: Montréal\n"
        "Cadastre: Cadastre du Québec\n"
        "Lot: 1 234 567\n\n"
        "Ligne 1:\n"
        "Date de présentation d'inscription: 2001-01-15\n"
        "Numéro: 5 123 456\n"
        "Nature de l'acte: Vente\n"
        "Qualité: Vendeur\n"
        "Nom des parties: TREMBLAY, MARIE\n"
        "Remarques: [Vide]\n"
        "Radiations: [Vide]\n"
    )

    def generate(self, request: ProviderRequest) -> ProviderResponse:
        if "NOMBRE_DE_LIGNES" in request.prompt:
            return ProviderResponse(text="NOMBRE_DE_LIGNES: 1", input_tokens=10, output_tokens=5)
        marker = "BOOST_COMPLETE" if "BOOST_COMPLETE" in request.prompt else "EXTRACTION_COMPLETE"
        return ProviderResponse(
            text=f"{self.PAGE_TEXT}\n{marker}: [1] lignes traitées.",
            input_tokens=len(request.prompt) // 4,
            output_tokens=len(self.PAGE_TEXT) // 4,
        )
