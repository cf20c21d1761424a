#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Tests for the CSV catalog import."""

import asyncio
import os
import shutil
import tempfile

from absl.testing import absltest
import db
from enums import CouponType
import import_csv
from sqlalchemy import select
import testing_support

_PRODUCTS = """id,name,description,price,stock,is_active,image_url
acacia,Miele di Acacia,"Chiaro, delicato",10.00,40,true,https://img.test/a.jpg
tiglio,Miele di Tiglio,,7.90,0,false,
"""

_COUPONS = """code,type,value,maximum_discount,minimum_amount,valid_until,usage_limit,usage_count,is_active,description
save10,percentage,10,,,,,0,true,
MENO5,fixed_amount,5.00,,20.00,,,0,true,
ESTATE20,percentage,20,10.00,30.00,2026-09-30T23:59:59+00:00,500,3,true,Estate
GRATIS,free_shipping,0,,15.00,,,0,,
"""


class ImportCsvTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.data_dir = os.path.join(self.test_dir, "data")
    os.makedirs(self.data_dir)
    self.database_path = os.path.join(self.test_dir, "test_shop.db")

  def tearDown(self) -> None:
    asyncio.run(db.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _write(self, name: str, content: str) -> str:
    path = os.path.join(self.data_dir, name)
    with open(path, "w") as f:
      f.write(content)
    return path

  def _import(self, data_dir=None) -> None:
    asyncio.run(
        import_csv.import_csv_data(
            self.database_path, data_dir or self.data_dir
        )
    )
    asyncio.run(testing_support.init_test_db(self.test_dir))

  def _coupons(self):
    async def run():
      async with db.manager.session_factory() as session:
        result = await session.execute(select(db.Coupon))
        return {c.code: c for c in result.scalars()}

    return asyncio.run(run())

  def test_read_products_converts_prices_to_cents(self) -> None:
    products = import_csv.read_products(self._write("products.csv", _PRODUCTS))
    self.assertLen(products, 2)
    self.assertEqual(products[0].price, 1000)
    self.assertEqual(products[0].description, "Chiaro, delicato")
    self.assertTrue(products[0].is_active)
    self.assertEqual(products[1].price, 790)
    self.assertFalse(products[1].is_active)
    self.assertIsNone(products[1].image_url)

  def test_read_coupons(self) -> None:
    coupons = {
        c.code: c
        for c in import_csv.read_coupons(self._write("coupons.csv", _COUPONS))
    }
    self.assertEqual(coupons["SAVE10"].value, 10)
    self.assertIsNone(coupons["SAVE10"].usage_limit)
    self.assertEqual(coupons["MENO5"].type, CouponType.FIXED_AMOUNT.value)
    self.assertEqual(coupons["MENO5"].value, 500)
    self.assertEqual(coupons["MENO5"].minimum_amount, 2000)
    self.assertEqual(coupons["ESTATE20"].maximum_discount, 1000)
    self.assertEqual(coupons["ESTATE20"].usage_limit, 500)
    self.assertEqual(coupons["ESTATE20"].usage_count, 3)
    self.assertEqual(coupons["GRATIS"].value, 0)
    self.assertTrue(coupons["GRATIS"].is_active)

  def test_import_replaces_catalog(self) -> None:
    self._write("products.csv", _PRODUCTS)
    self._write("coupons.csv", _COUPONS)
    self._import()
    asyncio.run(db.manager.close())

    header = _PRODUCTS.splitlines()[0]
    self._write(
        "products.csv",
        f"{header}\ncastagno,Miele di Castagno,,12.50,25,true,\n",
    )
    os.remove(os.path.join(self.data_dir, "coupons.csv"))
    self._import()

    self.assertIsNone(asyncio.run(testing_support.get_product("acacia")))
    castagno = asyncio.run(testing_support.get_product("castagno"))
    self.assertEqual(castagno.price, 1250)
    self.assertEqual(castagno.stock, 25)
    self.assertEmpty(self._coupons())

  def test_bundled_catalog_imports(self) -> None:
    bundled = os.path.join(os.path.dirname(import_csv.__file__), "data")
    self._import(bundled)

    self.assertGreater(
        asyncio.run(testing_support.count_rows(db.Product)), 0
    )
    self.assertIn("SAVE10", self._coupons())


if __name__ == "__main__":
  absltest.main()
