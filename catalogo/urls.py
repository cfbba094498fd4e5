from django.urls import path

from .views import download_file, mask_tax_id, preview_pdf, proposal_catalog

urlpatterns = [
    path("", proposal_catalog, name="proposal_catalog"),
    path("cnpj/mask/", mask_tax_id, name="mask_tax_id"),
    path("preview/<str:token>/", preview_pdf, name="preview_pdf"),
    path("download/<str:token>/", download_file, name="download_file"),
]
