import unittest


VTEX_TREE = [
    {
        "id": 1,
        "name": "Bebidas",
        "url": "https://www.jumbo.com.ar/bebidas",
        "hasChildren": True,
        "children": [
            {"id": 10, "name": "Gaseosas", "url": "https://www.jumbo.com.ar/bebidas/gaseosas", "hasChildren": False, "children": []},
            {"id": 11, "name": "Aguas", "url": "https://www.jumbo.com.ar/bebidas/aguas", "hasChildren": True, "children": []},
        ],
    },
    {"id": 2, "name": " Almacén ", "url": "https://www.jumbo.com.ar/almacen", "children": []},
]

VTEX_PRODUCT = {
    "productId": "4521",
    "productName": "Gaseosa Coca-Cola Sabor Original 1.5 L",
    "brand": "Coca Cola",
    "link": "https://www.jumbo.com.ar/gaseosa-coca-cola-1-5-l/p",
    "categories": ["/Bebidas/Gaseosas/", "/Bebidas/"],
    "items": [
        {
            "ean": "7790895000997",
            "images": [{"imageUrl": "https://jumboargentina.vteximg.com.br/arquivos/ids/1.jpg"}],
            "sellers": [
                {"sellerDefault": False, "commertialOffer": {"Price": 1, "ListPrice": 1, "AvailableQuantity": 0}},
                {"sellerDefault": True, "commertialOffer": {"Price": 1899.5, "ListPrice": 2100, "AvailableQuantity": 40}},
            ],
        }
    ],
}


class TestVtexParsing(unittest.TestCase):
    def test_flatten_category_tree(self):
        from gondola.scrapers.vtex import flatten_category_tree

        nodes = {n.external_id: n for n in flatten_category_tree("jumbo", VTEX_TREE)}

        self.assertEqual(set(nodes), {"1", "10", "11", "2"})
        self.assertEqual(nodes["10"].id_path, "1/10")
        self.assertEqual(nodes["10"].parent_external_id, "1")
        self.assertEqual(nodes["10"].depth, 1)
        self.assertTrue(nodes["10"].is_leaf)
        self.assertFalse(nodes["1"].is_leaf)
        # truncated tree: hasChildren wins over the empty list
        self.assertFalse(nodes["11"].is_leaf)
        self.assertTrue(nodes["2"].is_leaf)
        self.assertEqual(nodes["2"].name, "Almacén")

    def test_parse_product_uses_default_seller(self):
        from gondola.scrapers.vtex import parse_vtex_product

        product = parse_vtex_product("jumbo", VTEX_PRODUCT)

        self.assertEqual(product.external_id, "4521")
        self.assertEqual(product.brand, "Coca Cola")
        self.assertEqual(product.category_path, ["Bebidas", "Gaseosas"])
        self.assertEqual(product.price, 1899.5)
        self.assertEqual(product.list_price, 2100.0)
        self.assertTrue(product.available)
        self.assertEqual(product.ean, "7790895000997")
        self.assertTrue(product.image_url.endswith("1.jpg"))

    def test_parse_product_edge_cases(self):
        from gondola.scrapers.vtex import parse_vtex_product

        self.assertIsNone(parse_vtex_product("jumbo", {**VTEX_PRODUCT, "items": []}))

        out_of_stock = {
            **VTEX_PRODUCT,
            "categories": [],
            "items": [{"sellers": [{"commertialOffer": {"Price": 0, "ListPrice": 0, "AvailableQuantity": 0}}]}],
        }
        product = parse_vtex_product("jumbo", out_of_stock, fallback_category=["Bebidas"])
        self.assertIsNone(product.price)
        self.assertFalse(product.available)
        self.assertEqual(product.category_path, ["Bebidas"])

        with self.assertRaises(KeyError):
            parse_vtex_product("jumbo", {"items": VTEX_PRODUCT["items"]})


class TestLaAnonimaParsing(unittest.TestCase):
    LINKS = [
        {"href": "https://www.laanonima.com.ar/almacen/n1_1/", "name": "Almacén"},
        {"href": "https://www.laanonima.com.ar/aceites/n2_12/", "name": "Aceites"},
        {"href": "https://www.laanonima.com.ar/oliva/n3_120/", "name": "Aceite de oliva"},
        {"href": "https://www.laanonima.com.ar/pastas/n2_13/", "name": "Pastas"},
        {"href": "https://www.laanonima.com.ar/bebidas/n1_2/", "name": "Bebidas"},
        {"href": "https://www.laanonima.com.ar/almacen/n1_1/", "name": "Almacén"},
        {"href": "https://www.laanonima.com.ar/ofertas/", "name": "Ofertas"},
    ]

    def test_menu_links_build_tree(self):
        from gondola.scrapers.la_anonima import parse_menu_links

        nodes = {n.external_id: n for n in parse_menu_links("la_anonima", self.LINKS)}

        self.assertEqual(set(nodes), {"1", "12", "120", "13", "2"})
        self.assertEqual(nodes["120"].id_path, "1/12/120")
        self.assertEqual(nodes["13"].parent_external_id, "1")
        self.assertFalse(nodes["1"].is_leaf)
        self.assertFalse(nodes["12"].is_leaf)
        self.assertTrue(nodes["120"].is_leaf)
        self.assertTrue(nodes["13"].is_leaf)
        self.assertTrue(nodes["2"].is_leaf)

    def test_top_level_only_marks_nothing_as_leaf(self):
        from gondola.scrapers.la_anonima import parse_menu_links

        nodes = parse_menu_links("la_anonima", self.LINKS, max_level=1)
        self.assertEqual([n.external_id for n in nodes], ["1", "2"])
        self.assertFalse(any(n.is_leaf for n in nodes))

    def test_parse_tile(self):
        from gondola.scrapers.la_anonima import parse_tile

        tile = {
            "sku": "3090154",
            "name": "Aceite de Girasol Cocinero 900 Cc",
            "brand": "Cocinero",
            "price": "$ 2.150,50",
            "listPrice": "",
            "href": "https://www.laanonima.com.ar/aceite/art_3090154/",
            "imageUrl": "https://static.laanonima.com.ar/3090154.jpg",
            "available": True,
        }
        product = parse_tile("la_anonima", tile, ["Almacén", "Aceites"])

        self.assertEqual(product.external_id, "3090154")
        self.assertEqual(product.price, 2150.5)
        self.assertIsNone(product.list_price)
        self.assertEqual(product.brand, "Cocinero")
        self.assertEqual(product.category_path, ["Almacén", "Aceites"])
        self.assertIsNone(parse_tile("la_anonima", {"sku": "", "name": "x"}, []))
        self.assertIsNone(parse_tile("la_anonima", {**tile, "brand": "."}, []).brand)


class TestParsePrice(unittest.TestCase):
    def test_argentine_formats(self):
        from gondola.utils import parse_price

        self.assertEqual(parse_price("$ 1.299,00"), (1299.0, "ARS"))
        self.assertEqual(parse_price("$1.299"), (1299.0, "ARS"))
        self.assertEqual(parse_price("u$s 19.95"), (19.95, "USD"))
        self.assertEqual(parse_price("precio 1299.5"), (1299.5, None))
        self.assertEqual(parse_price(15), (15.0, None))
        self.assertEqual(parse_price(""), (None, None))
        self.assertEqual(parse_price("consultar"), (None, None))

    def test_slugify(self):
        from gondola.utils import slugify

        self.assertEqual(slugify("Lácteos y Productos Frescos"), "lacteos-y-productos-frescos")
