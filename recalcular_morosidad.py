# recalcular_morosidad.py (en la raíz del proyecto)
"""
Recalcula a mano el estado Activo/Moroso de todos los residentes y muestra
la tabla de cambios.

Uso:
    python recalcular_morosidad.py [--fecha AAAA-MM-DD] [--prepass]
"""
import argparse
import os
import sys
from datetime import date

from dotenv import load_dotenv

script_dir = os.path.dirname(os.path.abspath(__file__))
dotenv_path = os.path.join(script_dir, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from condoportal import create_app
from condoportal.errors import CondoPortalError
from condoportal.gateway import get_gateway
from condoportal.services.morosidad import recompute_all_resident_statuses


def imprimir_resumen(resumen):
    print("=" * 70)
    print(f"Residentes revisados: {resumen['total']}")
    print(f"Estados actualizados: {resumen['updated']}")
    print(f"Errores:              {resumen['errors']}")
    print("=" * 70)
    if not resumen['change_log']:
        print("Sin cambios de estado.")
        return
    print(f"{'ID':>6}  {'Residente':<30}  {'Anterior':<10}  {'Nuevo':<10}")
    print("-" * 70)
    for cambio in resumen['change_log']:
        nombre = (cambio.get('name') or '')[:30]
        print(f"{cambio['resident_id']:>6}  {nombre:<30}  {cambio['previous_status']:<10}  {cambio['new_status']:<10}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Recalcula el estado de morosidad de los residentes.")
    parser.add_argument('--fecha', type=date.fromisoformat, default=None,
                        help="Fecha de referencia (por defecto, hoy)")
    parser.add_argument('--prepass', action='store_true',
                        help="Ejecuta antes el marcado masivo de morosos")
    args = parser.parse_args(argv)

    app = create_app({'SCHEDULER_ENABLED': False})
    with app.app_context():
        gw = get_gateway()
        hoy = args.fecha or date.today()
        try:
            if args.prepass:
                marcados = gw.usuarios.mark_overdue_residents(hoy)
                print(f"Marcado masivo previo: {marcados} residentes.")
            resumen = recompute_all_resident_statuses(gw, hoy)
        except CondoPortalError as e:
            print(f"ERROR: {e}")
            return 1
    imprimir_resumen(resumen)
    return 0 if resumen['errors'] == 0 else 2


if __name__ == '__main__':
    sys.exit(main())
